"""Multi-scope rate limit coordinator.

This service turns one protected request into one admission verdict:
- Looks up the window policies configured for the use case
- Runs one sliding-window check per scope concurrently (asyncio tasks)
- Bounds the whole fan-out with a deadline
- Folds the per-scope outcomes with a fixed priority order
- Fails open when any scope could not be evaluated

The fold (``combine_outcomes``) is a pure function so the priority and
fail-open rules can be tested without a store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from attempt_guard.core.errors import (
    InvalidIdentifierError,
    StoreUnavailableError,
    UnknownUseCaseError,
)
from attempt_guard.core.logging import hash_identifier
from attempt_guard.core.policies import (
    GLOBAL_IDENTIFIER,
    SCOPE_PRIORITY,
    PolicyTable,
    Scope,
    WindowPolicy,
)
from attempt_guard.services.sliding_window import LimitResult, SlidingWindowLimiter
from attempt_guard.utils.text_normalizer import normalize_address, normalize_identity

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT_SECONDS = 2.0


@dataclass(frozen=True)
class Verdict:
    """Single admit/deny decision for one protected request.

    Attributes:
        allowed: Whether the request may proceed.
        scope: Governing scope of a denial; None when allowed.
        limit: Limit of the governing scope (None when degraded).
        remaining: Remaining events of the governing scope (None when degraded).
        reset_at: UNIX epoch seconds when the governing window rolls over.
        degraded: True when the store failed and the request was let through
            without enforcement.
    """

    allowed: bool
    scope: Scope | None = None
    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None
    degraded: bool = False

    @classmethod
    def fail_open(cls) -> "Verdict":
        return cls(allowed=True, degraded=True)


@dataclass(frozen=True)
class ScopeOutcome:
    """Completed (or abandoned) check for one scope.

    ``result`` is None when the scope could not be evaluated; ``failure``
    then names why (store error code or ``"timeout"``).
    """

    scope: Scope
    result: LimitResult | None = None
    failure: str | None = None

    @property
    def completed(self) -> bool:
        return self.result is not None


def combine_outcomes(outcomes: Iterable[ScopeOutcome]) -> Verdict:
    """Fold per-scope outcomes into one verdict.

    Rules:
    - Any scope not evaluated → fail open (no partial enforcement).
    - Otherwise the highest-priority denial wins
      (global > source-address > identity).
    - All admitted → minimum remaining; limit and reset from the
      source-address scope, or the highest-priority scope present.
    """

    by_scope = {outcome.scope: outcome for outcome in outcomes}
    if not by_scope:
        raise ValueError("at least one scope outcome is required")

    if any(not outcome.completed for outcome in by_scope.values()):
        return Verdict.fail_open()

    ordered = [by_scope[scope] for scope in SCOPE_PRIORITY if scope in by_scope]

    for outcome in ordered:
        result = outcome.result
        if not result.allowed:
            return Verdict(
                allowed=False,
                scope=outcome.scope,
                limit=result.limit,
                remaining=result.remaining,
                reset_at=result.reset_at,
            )

    reference = by_scope.get(Scope.SOURCE_ADDRESS, ordered[0]).result
    return Verdict(
        allowed=True,
        limit=reference.limit,
        remaining=min(outcome.result.remaining for outcome in ordered),
        reset_at=reference.reset_at,
    )


class RateLimitCoordinator:
    """Evaluate every configured scope of a use case and produce one verdict.

    The coordinator and its limiter receive the store explicitly; nothing in
    here reaches for process-wide state.
    """

    def __init__(
        self,
        limiter: SlidingWindowLimiter,
        policies: PolicyTable,
        *,
        check_timeout_seconds: float = DEFAULT_CHECK_TIMEOUT_SECONDS,
    ) -> None:
        if check_timeout_seconds <= 0:
            raise ValueError("check_timeout_seconds must be > 0")
        self._limiter = limiter
        self._policies = policies
        self._timeout = check_timeout_seconds

    @property
    def use_cases(self) -> list[str]:
        return list(self._policies)

    def policies_for(self, use_case: str) -> dict[Scope, WindowPolicy]:
        """Return the scope policies of a use case.

        Raises:
            UnknownUseCaseError: If the use case has no policies.
        """
        scopes = self._policies.get(use_case)
        if not scopes:
            raise UnknownUseCaseError(
                code="unknown_use_case",
                message=f"No rate limit policies configured for '{use_case}'",
                details={"use_case": use_case},
            )
        return dict(scopes)

    def describe(self, use_case: str) -> dict[Scope, WindowPolicy]:
        """Configured policies per scope, in priority order."""
        scopes = self.policies_for(use_case)
        return {scope: scopes[scope] for scope in SCOPE_PRIORITY if scope in scopes}

    @staticmethod
    def _identifier_for(scope: Scope, *, source_address: str, identity: str) -> str:
        if scope is Scope.GLOBAL:
            return GLOBAL_IDENTIFIER
        if scope is Scope.SOURCE_ADDRESS:
            value, field = normalize_address(source_address), "source_address"
        else:
            value, field = normalize_identity(identity), "identity"
        if not value:
            raise InvalidIdentifierError(
                code="empty_identifier",
                message=f"{field} must be a non-empty string",
                details={"field": field, "scope": scope.value},
            )
        return value

    async def _check_scope(self, scope: Scope, policy: WindowPolicy, identifier: str) -> ScopeOutcome:
        try:
            return ScopeOutcome(scope=scope, result=await self._limiter.check(policy, identifier))
        except StoreUnavailableError as exc:
            return ScopeOutcome(scope=scope, failure=exc.code)

    async def evaluate(self, use_case: str, *, source_address: str, identity: str) -> Verdict:
        """Evaluate all scopes of ``use_case`` concurrently.

        Every scope's increment lands, even when another scope denies.

        Args:
            use_case: Policy group name (e.g. ``"signup"``).
            source_address: Client address for the source-address scope.
            identity: Email for the identity scope (normalized here).

        Returns:
            Verdict for the request. Store failures and timeouts produce a
            degraded, fail-open verdict instead of an error.

        Raises:
            UnknownUseCaseError: If the use case is not configured.
            InvalidIdentifierError: If a required identifier is empty.
        """
        scopes = self.policies_for(use_case)
        identifiers = {
            scope: self._identifier_for(scope, source_address=source_address, identity=identity)
            for scope in scopes
        }

        tasks = {
            scope: asyncio.create_task(self._check_scope(scope, policy, identifiers[scope]))
            for scope, policy in scopes.items()
        }
        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=self._timeout)
        finally:
            # Abandon stragglers; increments already applied are not rolled back.
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        outcomes = [
            task.result() if task in done else ScopeOutcome(scope=scope, failure="timeout")
            for scope, task in tasks.items()
        ]
        verdict = combine_outcomes(outcomes)

        if verdict.degraded:
            logger.warning(
                "rate_limit.degraded",
                extra={
                    "use_case": use_case,
                    "failed_scopes": {
                        outcome.scope.value: outcome.failure
                        for outcome in outcomes
                        if not outcome.completed
                    },
                    "timeout_s": self._timeout,
                },
            )
        elif not verdict.allowed:
            logger.info(
                "rate_limit.denied",
                extra={
                    "use_case": use_case,
                    "scope": verdict.scope.value,
                    "identifier_hash": hash_identifier(identifiers[verdict.scope]),
                    "limit": verdict.limit,
                    "reset_at": verdict.reset_at,
                },
            )

        return verdict

    async def reset(self, use_case: str, scope: Scope, identifier: str) -> int:
        """Administrative full reset of one scope's counters for identifier.

        Unlike ``evaluate``, store failures propagate: an operator asked for
        a reset and must learn that it did not happen.

        Returns:
            Number of bucket keys removed.

        Raises:
            UnknownUseCaseError: If the use case or scope is not configured.
            InvalidIdentifierError: If identifier is empty.
            StoreUnavailableError: If the counter store fails.
        """
        scopes = self.policies_for(use_case)
        policy = scopes.get(scope)
        if policy is None:
            raise UnknownUseCaseError(
                code="unknown_scope",
                message=f"Scope '{scope.value}' is not configured for '{use_case}'",
                details={"use_case": use_case, "scope": scope.value},
            )

        if scope is Scope.GLOBAL:
            # One counter per use case; the path identifier is ignored
            target = GLOBAL_IDENTIFIER
        else:
            target = self._identifier_for(scope, source_address=identifier, identity=identifier)

        removed = await self._limiter.reset(policy, target)
        logger.info(
            "rate_limit.reset",
            extra={
                "use_case": use_case,
                "scope": scope.value,
                "identifier_hash": hash_identifier(target),
                "keys_removed": removed,
            },
        )
        return removed
