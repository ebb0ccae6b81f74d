"""Rate limiting glue for FastAPI routes.

This module wires the coordinator into the HTTP layer:
- Resolves the client address from proxy headers or the socket
- Exposes the coordinator built at start-up as a dependency
- Maps a ``Verdict`` to status code, headers and a scope-specific message

The coordinator itself knows nothing about HTTP.
"""

from __future__ import annotations

import math
import time

from fastapi import HTTPException, Request, Response, status

from attempt_guard.core.config import settings
from attempt_guard.core.policies import Scope
from attempt_guard.services.coordinator import RateLimitCoordinator, Verdict

UNKNOWN_ADDRESS = "unknown"

GENERIC_DENIAL_MESSAGE = "Rate limit exceeded. Please try again later."

DENIAL_MESSAGES: dict[Scope, str] = {
    Scope.GLOBAL: "System is experiencing high load. Please try again in a few minutes.",
    Scope.SOURCE_ADDRESS: "Too many attempts from your network. Please try again later.",
    Scope.IDENTITY: "Too many attempts with this email. Please try again later.",
}


def extract_client_address(request: Request) -> str:
    """Best-effort client address for the source-address scope.

    Order of preference:
    1. First entry of ``X-Forwarded-For`` (the original client)
    2. ``X-Real-IP``
    3. The direct connection address

    Forwarded headers are only trustworthy behind a proxy that overwrites
    them; deploy accordingly.
    """

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    return request.client.host if request.client else UNKNOWN_ADDRESS


def get_coordinator(request: Request) -> RateLimitCoordinator:
    """FastAPI dependency returning the coordinator built by the app factory."""

    return request.app.state.coordinator


def retry_after_seconds(reset_at: int | None, now: float | None = None) -> int:
    if reset_at is None:
        return 0
    current = time.time() if now is None else now
    return max(0, int(math.ceil(reset_at - current)))


def rate_limit_headers(verdict: Verdict, *, now: float | None = None) -> dict[str, str]:
    """Build ``X-RateLimit-*`` (and ``Retry-After`` on denial) headers.

    A degraded verdict carries no numbers, so it yields no headers.
    """

    if not settings.rate_limit.include_headers or verdict.limit is None:
        return {}

    headers = {
        "X-RateLimit-Limit": str(verdict.limit),
        "X-RateLimit-Remaining": str(verdict.remaining or 0),
        "X-RateLimit-Reset": str(verdict.reset_at),
    }
    if not verdict.allowed:
        headers["Retry-After"] = str(retry_after_seconds(verdict.reset_at, now))
    return headers


def apply_verdict(verdict: Verdict, response: Response, *, now: float | None = None) -> None:
    """Attach headers for an admitted request or raise 429 for a denial.

    Args:
        verdict: Coordinator verdict for this request.
        response: Outgoing response to decorate.
        now: Current time from the limiter clock; defaults to time.time().

    Raises:
        HTTPException: 429 Too Many Requests with scope-specific guidance.
    """

    now = time.time() if now is None else now
    headers = rate_limit_headers(verdict, now=now)

    if verdict.allowed:
        response.headers.update(headers)
        return

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": GENERIC_DENIAL_MESSAGE,
            "message": DENIAL_MESSAGES.get(verdict.scope, GENERIC_DENIAL_MESSAGE),
            "scope": verdict.scope.value if verdict.scope else None,
            "retry_after": retry_after_seconds(verdict.reset_at, now),
            "limit": verdict.limit,
            "remaining": verdict.remaining,
        },
        headers=headers or None,
    )
