"""Application factory for the FastAPI app.

Centralizes app construction (policies, counter store, coordinator,
middleware, handlers, routers) so tests can build isolated apps with a fake
store and clock.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from attempt_guard.adapters.counter_store import AbstractCounterStore, create_counter_store
from attempt_guard.api.routes import guard_router, health_router
from attempt_guard.core.config import settings
from attempt_guard.core.exception_handlers import setup_exception_handlers
from attempt_guard.core.logging import configure_logging
from attempt_guard.core.middleware import request_id_middleware
from attempt_guard.core.openapi import apply_openapi_customizations
from attempt_guard.core.policies import PolicyTable, build_policy_table, validate_policy_table
from attempt_guard.services.coordinator import RateLimitCoordinator
from attempt_guard.services.sliding_window import SlidingWindowLimiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await app.state.counter_store.close()


def create_app(
    *,
    store: AbstractCounterStore | None = None,
    policies: PolicyTable | None = None,
    clock: Callable[[], float] = time.time,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    The policy table is validated here, before the app exists; a
    misconfigured policy aborts start-up.

    Args:
        store: Counter store; built from settings when omitted.
        policies: Policy table; defaults to the built-in table under the
            configured namespace.
        clock: Time source shared by the limiter.
        configure_logs: Install the JSON logging configuration.

    Returns:
        Configured FastAPI app.

    Raises:
        PolicyMisconfiguredError: If any policy has a non-positive limit or window.
    """
    if configure_logs:
        # Logging first so subsequent init logs are formatted as desired
        configure_logging(settings.log)

    table = policies if policies is not None else build_policy_table(settings.rate_limit.namespace)
    validate_policy_table(table)

    counter_store = store if store is not None else create_counter_store(settings.store)
    coordinator = RateLimitCoordinator(
        SlidingWindowLimiter(counter_store, clock=clock),
        table,
        check_timeout_seconds=settings.rate_limit.check_timeout_seconds,
    )

    app = FastAPI(
        title="Attempt Guard API",
        description=(
            "Multi-scope sliding-window rate limiting for signup and login attempts. "
            "Each attempt is counted per client address, per email and system-wide; "
            "the most important denial wins, and the service fails open when its "
            "counter store is unavailable."
        ),
        version="0.1.0",
        lifespan=_lifespan,
    )
    app.state.counter_store = counter_store
    app.state.coordinator = coordinator
    app.state.clock = clock

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(guard_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    logger.info(
        "app.configured",
        extra={
            "use_cases": coordinator.use_cases,
            "store_backend": type(counter_store).__name__,
            "check_timeout_s": settings.rate_limit.check_timeout_seconds,
        },
    )
    return app
