"""Counter store interface.

The limiter should depend on this abstraction (not a concrete client) so the
store can be swapped (Redis in production, in-memory in tests) without
touching the rate limit logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowCounts:
    """Counts observed by one atomic increment.

    Attributes:
        current: Value of the incremented key after the increment.
        previous: Value of the companion (previous bucket) key; 0 when absent.
    """

    current: int
    previous: int = 0


class AbstractCounterStore(ABC):
    """Interface for atomic, expiring counters keyed by opaque strings."""

    @abstractmethod
    async def increment(
        self,
        key: str,
        *,
        window_seconds: int,
        previous_key: str | None = None,
    ) -> WindowCounts:
        """Atomically increment ``key`` and read ``previous_key``.

        A freshly created key expires after ``2 * window_seconds`` so it stays
        readable as the previous bucket for one full window.

        Args:
            key: Counter key (non-empty).
            window_seconds: Window length in seconds (positive).
            previous_key: Optional key read in the same atomic step.

        Returns:
            WindowCounts with the new value of ``key`` and the previous count.

        Raises:
            ValueError: If key is empty or window_seconds is not positive.
            StoreUnavailableError: If the store cannot serve the request.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Remove keys outright.

        Returns:
            Number of keys that existed and were removed.

        Raises:
            StoreUnavailableError: If the store cannot serve the request.
        """
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers; never raises."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release network resources, if any."""


def validate_increment_args(key: str, window_seconds: int) -> None:
    if not key:
        raise ValueError("key must be a non-empty string")
    if window_seconds < 1:
        raise ValueError("window_seconds must be >= 1")
