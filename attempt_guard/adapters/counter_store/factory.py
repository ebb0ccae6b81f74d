"""Counter store factory for settings-driven backend selection."""

from __future__ import annotations

from attempt_guard.adapters.counter_store.base import AbstractCounterStore
from attempt_guard.adapters.counter_store.in_memory import InMemoryCounterStore
from attempt_guard.adapters.counter_store.redis_store import RedisCounterStore
from attempt_guard.core.config import StoreSettings, settings
from attempt_guard.core.errors import ValidationAppError


def create_counter_store(store_settings: StoreSettings | None = None) -> AbstractCounterStore:
    """Create the counter store configured in settings.

    Args:
        store_settings: Optional store settings; defaults to global settings.

    Returns:
        A ready-to-use counter store. Redis connects lazily on first use.

    Raises:
        ValidationAppError: If the configured backend is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "redis":
        return RedisCounterStore(
            redis_url=cfg.redis_url,
            socket_timeout=cfg.socket_timeout_seconds,
            connect_timeout=cfg.connect_timeout_seconds,
        )
    if backend == "memory":
        return InMemoryCounterStore()

    raise ValidationAppError(
        code="unsupported_store_backend",
        message=f"Unsupported counter store backend: {cfg.backend}",
        details={"backend": cfg.backend, "hint": "Use 'redis' or 'memory'"},
    )
