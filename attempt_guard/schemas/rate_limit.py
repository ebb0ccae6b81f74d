"""Pydantic schemas for the guard endpoints."""

from __future__ import annotations

from typing import Dict

from pydantic import BaseModel, Field


class GuardCheckRequest(BaseModel):
    """Attempt about to be made against the protected endpoint."""

    email: str = Field(
        ...,
        min_length=1,
        max_length=320,
        description="Email submitted with the attempt; trimmed and lower-cased before counting.",
    )


class GuardCheckResponse(BaseModel):
    """Admission verdict for an allowed attempt."""

    allowed: bool = Field(..., description="Always true; denials are returned as HTTP 429.")
    limit: int | None = Field(
        default=None, description="Limit of the governing scope (absent when degraded)."
    )
    remaining: int | None = Field(
        default=None,
        description="Most constraining remaining count across scopes (absent when degraded).",
    )
    reset_at: int | None = Field(
        default=None, description="UNIX epoch seconds when the governing window rolls over."
    )
    degraded: bool = Field(
        default=False,
        description=(
            "True when a scope could not be evaluated and the attempt was admitted "
            "without enforcement."
        ),
    )


class ScopePolicyInfo(BaseModel):
    limit: int = Field(..., description="Attempts admitted per window.")
    window_seconds: int = Field(..., description="Window length in seconds.")


class UseCasePoliciesResponse(BaseModel):
    """Configured limits for a use case, for display to users."""

    use_case: str
    scopes: Dict[str, ScopePolicyInfo] = Field(
        default_factory=dict,
        description="Policy per scope, keyed by scope name, in priority order.",
    )
    client_address: str = Field(
        ..., description="Address the source-address scope would count for this caller."
    )


class HealthResponse(BaseModel):
    status: str = Field(..., description="'ok' when the service is up.")
    store: str = Field(..., description="'ok' or 'unavailable' for the counter store.")
