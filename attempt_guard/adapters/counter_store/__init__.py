"""Counter store adapters.

The limiter depends on ``AbstractCounterStore`` only. ``RedisCounterStore``
is the shared production store; ``InMemoryCounterStore`` serves single-process
development and tests.
"""

from attempt_guard.adapters.counter_store.base import AbstractCounterStore, WindowCounts
from attempt_guard.adapters.counter_store.factory import create_counter_store
from attempt_guard.adapters.counter_store.in_memory import InMemoryCounterStore
from attempt_guard.adapters.counter_store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowCounts",
    "create_counter_store",
]
