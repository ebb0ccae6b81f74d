"""In-memory expiring counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Expired keys are dropped on access, and swept in bulk once the earliest
  expiry has passed, so rolled-over buckets do not accumulate.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from attempt_guard.adapters.counter_store.base import (
    AbstractCounterStore,
    WindowCounts,
    validate_increment_args,
)


@dataclass
class _Counter:
    value: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store backed by a process-local dict.

    Important:
        Suitable for development and tests. With several Uvicorn/Gunicorn
        workers each worker keeps its own independent counters.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in seconds; drives expiry.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._counters: dict[str, _Counter] = {}
        self._next_sweep_at = float("inf")

    def _sweep(self, now: float) -> None:
        expired = [key for key, counter in self._counters.items() if counter.expires_at <= now]
        for key in expired:
            del self._counters[key]
        self._next_sweep_at = min(
            (counter.expires_at for counter in self._counters.values()),
            default=float("inf"),
        )

    def _live(self, key: str, now: float) -> _Counter | None:
        counter = self._counters.get(key)
        if counter is not None and counter.expires_at <= now:
            del self._counters[key]
            return None
        return counter

    async def increment(
        self,
        key: str,
        *,
        window_seconds: int,
        previous_key: str | None = None,
    ) -> WindowCounts:
        validate_increment_args(key, window_seconds)
        now = self._clock()

        with self._lock:
            if now >= self._next_sweep_at:
                self._sweep(now)

            counter = self._live(key, now)
            if counter is None:
                counter = _Counter(value=0, expires_at=now + 2 * window_seconds)
                self._counters[key] = counter
                self._next_sweep_at = min(self._next_sweep_at, counter.expires_at)
            counter.value += 1

            previous = 0
            if previous_key:
                previous_counter = self._live(previous_key, now)
                previous = previous_counter.value if previous_counter else 0

            return WindowCounts(current=counter.value, previous=previous)

    async def delete(self, *keys: str) -> int:
        now = self._clock()
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key, now) is not None:
                    del self._counters[key]
                    removed += 1
        return removed

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)
