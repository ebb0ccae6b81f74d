from __future__ import annotations

from attempt_guard.api.routes.guard import router as guard_router
from attempt_guard.api.routes.health import router as health_router

__all__ = ["guard_router", "health_router"]
