"""Application-level exception types.

Errors raised at the service boundary. Each subclass maps to one HTTP status
in the exception handlers; the structured `details` carry the classified
upstream failure (kind, wait, suggestion) through to the response envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent across the codebase while
    letting each error carry only what it knows.
    """

    code: str
    message: str
    hint: str
    kind: str
    retryable: bool
    retry_after: float
    suggestion: str
    http_status: int | None
    violations: list[dict[str, str]]
    attempts: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for gateway failures.

    Attributes:
        code: Stable snake_case code, e.g. `rate_limited` or `upstream_invalid_credential`.
        message: Text shown to the API client.
        details: Classification and retry hints, when known.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # str(error) should read as the message.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised for bad request parameters or incomplete configuration."""


class AuthenticationAppError(AppError):
    """Raised when the X-API-Key check fails."""


class ComplianceAppError(AppError):
    """Raised when a requested date range violates upstream limits."""


class RateLimitedAppError(AppError):
    """Raised when the local call-cadence policy denies an upstream call."""


class UpstreamAppError(AppError):
    """Raised when the upstream call failed after classification and retries."""
