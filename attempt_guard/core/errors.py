"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

A rate limit denial is not an error: it is the ``allowed=False`` branch of a
``Verdict``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    use_case: str
    scope: str
    field: str
    limit: int
    window_seconds: int
    backend: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidIdentifierError(ValidationAppError):
    """Raised when a scope identifier (address or email) is empty."""


class UnknownUseCaseError(ValidationAppError):
    """Raised when no policies are configured for the requested use case."""


class PolicyMisconfiguredError(AppError):
    """Raised at start-up when a window policy has a non-positive limit or window."""


class StoreUnavailableError(AppError):
    """Raised when the counter store cannot be reached or answers garbage.

    Covers connection failures, timeouts and protocol errors alike.
    """


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""
