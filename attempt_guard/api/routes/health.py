from __future__ import annotations

from fastapi import APIRouter, Request

from attempt_guard.schemas.rate_limit import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    The service stays "ok" when the counter store is down, because guard
    checks fail open; ``store`` reports the degraded dependency.
    """

    store_ok = await request.app.state.counter_store.ping()
    return HealthResponse(status="ok", store="ok" if store_ok else "unavailable")
