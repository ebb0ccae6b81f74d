"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before any settings are imported so tests never
reach for a .env file or a real Redis.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "plain")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

import pytest  # noqa: E402

from attempt_guard.adapters.counter_store import AbstractCounterStore, WindowCounts  # noqa: E402
from attempt_guard.core.errors import StoreUnavailableError  # noqa: E402


class FakeTime:
    """Deterministic clock shared by a store and a limiter."""

    def __init__(self, start: float = 6_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class UnavailableCounterStore(AbstractCounterStore):
    """Store whose every call fails like an unreachable Redis."""

    def __init__(self) -> None:
        self.calls = 0

    async def increment(self, key, *, window_seconds, previous_key=None) -> WindowCounts:
        self.calls += 1
        raise StoreUnavailableError(code="store_unavailable", message="connection refused")

    async def delete(self, *keys: str) -> int:
        raise StoreUnavailableError(code="store_unavailable", message="connection refused")

    async def ping(self) -> bool:
        return False


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def unavailable_store() -> UnavailableCounterStore:
    return UnavailableCounterStore()
