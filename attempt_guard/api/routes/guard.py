from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from attempt_guard.core.auth import verify_api_key
from attempt_guard.core.config import settings
from attempt_guard.core.policies import Scope
from attempt_guard.core.rate_limit import (
    apply_verdict,
    extract_client_address,
    get_coordinator,
)
from attempt_guard.schemas.rate_limit import (
    GuardCheckRequest,
    GuardCheckResponse,
    ScopePolicyInfo,
    UseCasePoliciesResponse,
)
from attempt_guard.services.coordinator import RateLimitCoordinator

router = APIRouter(tags=["Guard"])

CoordinatorDep = Annotated[RateLimitCoordinator, Depends(get_coordinator)]


@router.post(
    "/guard/{use_case}",
    response_model=GuardCheckResponse,
    response_model_exclude_none=True,
    responses={429: {"description": "Attempt denied by one of the rate limit scopes."}},
)
async def check_attempt(
    use_case: str,
    payload: GuardCheckRequest,
    request: Request,
    response: Response,
    coordinator: CoordinatorDep,
) -> GuardCheckResponse:
    """Count one attempt and decide whether it may proceed.

    Call once per signup/login attempt, before doing any expensive work.
    A 200 means go ahead; a 429 carries ``Retry-After`` and a message tied to
    the scope that denied. When the counter store is down the attempt is
    admitted with ``degraded: true``.

    Raises:
        HTTPException: 429 when a scope denies the attempt.
    """
    if not settings.rate_limit.enabled:
        return GuardCheckResponse(allowed=True)

    verdict = await coordinator.evaluate(
        use_case,
        source_address=extract_client_address(request),
        identity=payload.email,
    )
    apply_verdict(verdict, response, now=request.app.state.clock())

    return GuardCheckResponse(
        allowed=verdict.allowed,
        limit=verdict.limit,
        remaining=verdict.remaining,
        reset_at=verdict.reset_at,
        degraded=verdict.degraded,
    )


@router.get("/guard/{use_case}", response_model=UseCasePoliciesResponse)
async def describe_use_case(
    use_case: str,
    request: Request,
    coordinator: CoordinatorDep,
) -> UseCasePoliciesResponse:
    """Return the configured limits of a use case and the caller's address."""
    policies = coordinator.describe(use_case)
    return UseCasePoliciesResponse(
        use_case=use_case,
        scopes={
            scope.value: ScopePolicyInfo(limit=policy.limit, window_seconds=policy.window_seconds)
            for scope, policy in policies.items()
        },
        client_address=extract_client_address(request),
    )


@router.delete(
    "/guard/{use_case}/{scope}/{identifier}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)],
)
async def reset_counters(
    use_case: str,
    scope: Scope,
    identifier: str,
    coordinator: CoordinatorDep,
) -> Response:
    """Fully reset one scope's counters for an identifier (support tooling).

    Raises:
        StoreUnavailableError: Rendered as 503 when the store is down.
    """
    await coordinator.reset(use_case, scope, identifier)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
