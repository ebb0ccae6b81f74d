"""Window policy table.

One immutable ``WindowPolicy`` per (use case, scope). The table is built once
at start-up and validated before the application accepts traffic; a
non-positive limit or window is fatal.

Key layout: ``<namespace>:<use_case>:<scope_key>:<identifier>``. The policy's
``key_prefix`` carries everything up to and including the last colon.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from attempt_guard.core.errors import PolicyMisconfiguredError

GLOBAL_IDENTIFIER = "global"


class Scope(str, Enum):
    """Dimension along which attempts are counted, in priority order."""

    GLOBAL = "global"
    SOURCE_ADDRESS = "source-address"
    IDENTITY = "identity"

    @property
    def key_segment(self) -> str:
        """Short segment used in counter keys."""
        return _KEY_SEGMENTS[self]

    @property
    def priority(self) -> int:
        """Lower value wins when several scopes deny."""
        return SCOPE_PRIORITY.index(self)


_KEY_SEGMENTS = {
    Scope.GLOBAL: "global",
    Scope.SOURCE_ADDRESS: "ip",
    Scope.IDENTITY: "email",
}

SCOPE_PRIORITY: tuple[Scope, ...] = (Scope.GLOBAL, Scope.SOURCE_ADDRESS, Scope.IDENTITY)


class UseCase(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"


@dataclass(frozen=True)
class WindowPolicy:
    """Admitted count per window for one (use case, scope).

    Attributes:
        limit: Events admitted per window.
        window_seconds: Window length in seconds.
        key_prefix: Counter key prefix, e.g. ``ratelimit:signup:ip:``.
    """

    limit: int
    window_seconds: int
    key_prefix: str

    def key_for(self, identifier: str) -> str:
        return f"{self.key_prefix}{identifier}"


PolicyTable = Mapping[str, Mapping[Scope, WindowPolicy]]

# (limit, window_seconds) per use case and scope
DEFAULT_LIMITS: dict[UseCase, dict[Scope, tuple[int, int]]] = {
    UseCase.SIGNUP: {
        Scope.SOURCE_ADDRESS: (3, 15 * 60),
        Scope.IDENTITY: (5, 60 * 60),
        Scope.GLOBAL: (100, 60),
    },
    # Stricter per-address window than signup to slow credential stuffing
    UseCase.LOGIN: {
        Scope.SOURCE_ADDRESS: (10, 60),
        Scope.IDENTITY: (5, 60),
        Scope.GLOBAL: (1000, 60),
    },
}


def build_key_prefix(namespace: str, use_case: str, scope: Scope) -> str:
    return f"{namespace}:{use_case}:{scope.key_segment}:"


def build_policy_table(
    namespace: str = "ratelimit",
    limits: Mapping[UseCase | str, Mapping[Scope, tuple[int, int]]] | None = None,
) -> PolicyTable:
    """Build the immutable policy table.

    Args:
        namespace: Key namespace shared by every counter.
        limits: ``{use_case: {scope: (limit, window_seconds)}}``; defaults to
            ``DEFAULT_LIMITS``.

    Returns:
        Read-only mapping ``{use_case: {scope: WindowPolicy}}``.
    """

    source = DEFAULT_LIMITS if limits is None else limits
    table: dict[str, Mapping[Scope, WindowPolicy]] = {}
    for use_case, scopes in source.items():
        name = use_case.value if isinstance(use_case, UseCase) else str(use_case)
        table[name] = MappingProxyType(
            {
                scope: WindowPolicy(
                    limit=limit,
                    window_seconds=window,
                    key_prefix=build_key_prefix(namespace, name, scope),
                )
                for scope, (limit, window) in scopes.items()
            }
        )
    return MappingProxyType(table)


def validate_policy_table(table: PolicyTable) -> None:
    """Reject any policy that could not be enforced.

    Raises:
        PolicyMisconfiguredError: On a non-positive limit or window, an empty
            key prefix, or a use case without scopes.
    """

    for use_case, scopes in table.items():
        if not scopes:
            raise PolicyMisconfiguredError(
                code="policy_no_scopes",
                message=f"Use case '{use_case}' has no configured scopes",
                details={"use_case": use_case},
            )
        for scope, policy in scopes.items():
            if policy.limit <= 0 or policy.window_seconds <= 0:
                raise PolicyMisconfiguredError(
                    code="policy_non_positive",
                    message=(
                        f"Policy {use_case}/{scope.value} must have limit > 0 and window > 0"
                    ),
                    details={
                        "use_case": use_case,
                        "scope": scope.value,
                        "limit": policy.limit,
                        "window_seconds": policy.window_seconds,
                    },
                )
            if not policy.key_prefix:
                raise PolicyMisconfiguredError(
                    code="policy_empty_prefix",
                    message=f"Policy {use_case}/{scope.value} has an empty key prefix",
                    details={"use_case": use_case, "scope": scope.value},
                )
