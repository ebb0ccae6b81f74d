"""Two-bucket sliding window limiter.

Approximates a continuous trailing window of length ``W`` with two adjacent
fixed buckets. For an event at ``now``:

    t0        = floor(now / W) * W          start of the current bucket
    overlap   = 1 - (now - t0) / W          share of the previous bucket still
                                            inside the trailing window
    effective = current + previous * overlap

The event is admitted iff ``effective <= limit``. The increment is applied
before the decision, so a denied attempt is still counted. The approximation
can over- or under-count by at most the overlap-weighted previous bucket.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from attempt_guard.adapters.counter_store.base import AbstractCounterStore
from attempt_guard.core.errors import InvalidIdentifierError
from attempt_guard.core.policies import WindowPolicy


@dataclass(frozen=True)
class LimitResult:
    """Outcome of one (policy, identifier) check.

    Attributes:
        allowed: Whether this event is within policy.
        limit: Events admitted per window.
        remaining: Whole events still admitted in the trailing window (>= 0).
        reset_at: UNIX epoch seconds of the next bucket boundary.
        effective_count: Overlap-weighted count including this event.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    effective_count: float


@dataclass(frozen=True)
class WindowBounds:
    bucket: int
    start: int
    end: int


def window_bounds(now: float, window_seconds: int) -> WindowBounds:
    """Compute the fixed bucket containing ``now``."""
    bucket = int(now // window_seconds)
    start = bucket * window_seconds
    return WindowBounds(bucket=bucket, start=start, end=start + window_seconds)


def bucket_key(policy: WindowPolicy, identifier: str, bucket: int) -> str:
    return f"{policy.key_for(identifier)}:{bucket}"


def weighted_count(current: int, previous: int, *, now: float, bounds: WindowBounds, window_seconds: int) -> float:
    overlap = 1.0 - (now - bounds.start) / window_seconds
    return current + previous * overlap


class SlidingWindowLimiter:
    """Admission check for a single (policy, identifier) pair.

    Holds no state of its own; every call recomputes from the store.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Counter store shared by every limiter in the process.
            clock: Time source returning UNIX time in seconds. The calling
                process's clock is the only time source; store expiry is a
                safety net.
        """
        self._store = store
        self._clock = clock

    async def check(self, policy: WindowPolicy, identifier: str) -> LimitResult:
        """Record one event and decide whether it is admitted.

        Args:
            policy: Window policy to enforce.
            identifier: Scope identifier (address, email or the global key).

        Returns:
            LimitResult for this event.

        Raises:
            InvalidIdentifierError: If identifier is empty.
            StoreUnavailableError: If the counter store fails.
        """
        if not identifier:
            raise InvalidIdentifierError(
                code="empty_identifier",
                message="Rate limit identifier must be a non-empty string",
                details={"hint": "Reject empty addresses and emails before evaluation"},
            )

        now = self._clock()
        window = policy.window_seconds
        bounds = window_bounds(now, window)

        counts = await self._store.increment(
            bucket_key(policy, identifier, bounds.bucket),
            window_seconds=window,
            previous_key=bucket_key(policy, identifier, bounds.bucket - 1),
        )

        effective = weighted_count(
            counts.current,
            counts.previous,
            now=now,
            bounds=bounds,
            window_seconds=window,
        )
        allowed = effective <= policy.limit
        remaining = max(0, math.floor(policy.limit - effective)) if allowed else 0

        return LimitResult(
            allowed=allowed,
            limit=policy.limit,
            remaining=remaining,
            reset_at=bounds.end,
            effective_count=effective,
        )

    async def reset(self, policy: WindowPolicy, identifier: str) -> int:
        """Delete both buckets that feed the current window for identifier.

        Returns:
            Number of bucket keys removed.
        """
        if not identifier:
            raise InvalidIdentifierError(
                code="empty_identifier",
                message="Rate limit identifier must be a non-empty string",
            )

        bounds = window_bounds(self._clock(), policy.window_seconds)
        return await self._store.delete(
            bucket_key(policy, identifier, bounds.bucket),
            bucket_key(policy, identifier, bounds.bucket - 1),
        )
