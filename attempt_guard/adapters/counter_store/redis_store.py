"""Redis-backed counter store.

A single Lua script increments the current bucket, sets its expiry when the
bucket is new (or has lost its TTL) and reads the previous bucket. Redis runs
scripts atomically, so concurrent callers from any number of processes never
observe a half-applied increment.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from attempt_guard.adapters.counter_store.base import (
    AbstractCounterStore,
    WindowCounts,
    validate_increment_args,
)
from attempt_guard.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# KEYS[1]: current bucket, KEYS[2] (optional): previous bucket
# ARGV[1]: expiry in milliseconds
INCREMENT_WINDOW_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 or redis.call('PTTL', KEYS[1]) < 0 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end

    local previous = 0
    if #KEYS > 1 then
        previous = tonumber(redis.call('GET', KEYS[2])) or 0
    end

    return {current, previous}
"""

_STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisCounterStore(AbstractCounterStore):
    """Counter store using a shared Redis instance.

    Redis key format: ``<key_prefix><identifier>:<bucket_index>`` (built by
    the limiter; this adapter treats keys as opaque).
    """

    def __init__(
        self,
        redis_client: Any | None = None,
        *,
        redis_url: str | None = None,
        socket_timeout: float = 1.0,
        connect_timeout: float = 1.0,
    ) -> None:
        """Initialize the store.

        Args:
            redis_client: Existing ``redis.asyncio`` client (or test double).
            redis_url: Connection URL used when no client is given.
            socket_timeout: Per-command timeout in seconds.
            connect_timeout: Connection timeout in seconds.

        Raises:
            ValueError: If neither a client nor a URL is provided.
        """
        if redis_client is None and not redis_url:
            raise ValueError("redis_client or redis_url is required")

        self._redis = redis_client
        self._redis_url = redis_url
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout

    def _get_client(self) -> Any:
        """Get or lazily create the Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
            )
        return self._redis

    async def increment(
        self,
        key: str,
        *,
        window_seconds: int,
        previous_key: str | None = None,
    ) -> WindowCounts:
        validate_increment_args(key, window_seconds)
        keys = [key, previous_key] if previous_key else [key]
        expiry_ms = 2 * window_seconds * 1000

        try:
            result = await self._get_client().eval(
                INCREMENT_WINDOW_SCRIPT,
                len(keys),
                *keys,
                expiry_ms,
            )
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Counter store increment failed: {type(exc).__name__}",
                details={"backend": "redis"},
            ) from exc

        try:
            current, previous = (int(value) for value in result)
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError(
                code="store_bad_response",
                message="Counter store returned an unexpected increment response",
                details={"backend": "redis"},
            ) from exc

        return WindowCounts(current=current, previous=previous)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._get_client().delete(*keys))
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"Counter store delete failed: {type(exc).__name__}",
                details={"backend": "redis"},
            ) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except _STORE_ERRORS as exc:
            logger.warning(
                "counter_store.ping_failed",
                extra={"backend": "redis", "error_type": type(exc).__name__},
            )
            return False

    async def close(self) -> None:
        if self._redis is not None:
            # aclose() replaces close() in redis-py 5.0+
            await self._redis.aclose()
            self._redis = None
