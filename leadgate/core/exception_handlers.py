"""Global exception handlers.

Domain errors become a uniform JSON envelope::

    {"error": {"code", "message", "request_id", "details"?}}

Status mapping:

- ValidationAppError -> 400
- AuthenticationAppError -> 403
- ComplianceAppError -> 422
- RateLimitedAppError -> 429
- UpstreamAppError -> 502
- anything else -> 500 (no internals leaked)

Retryable errors also carry a ``Retry-After`` header in whole seconds.
"""

from __future__ import annotations

import logging
import math

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from leadgate.core.errors import (
    AppError,
    AuthenticationAppError,
    ComplianceAppError,
    RateLimitedAppError,
    UpstreamAppError,
    ValidationAppError,
)
from leadgate.core.logging import get_request_id

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (AuthenticationAppError, 403),
    (ComplianceAppError, 422),
    (RateLimitedAppError, 429),
    (UpstreamAppError, 502),
    (ValidationAppError, 400),
)


def status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _retry_after_header(exc: AppError) -> dict[str, str]:
    details = exc.details or {}
    retry_after = details.get("retry_after")
    if not details.get("retryable") or not retry_after:
        return {}
    return {"Retry-After": str(max(1, math.ceil(retry_after)))}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError with its mapped status code."""
    status_code = status_for(exc)
    request_id = get_request_id()

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": request_id,
        },
    )

    error_content: dict = {
        "code": exc.code,
        "message": exc.message,
        "request_id": request_id,
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=_retry_after_header(exc),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Safety net for unexpected errors; logs the type, returns a generic 500."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
