from __future__ import annotations

import logging
import re
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from leadgate.core.auth import verify_api_key
from leadgate.core.dependencies import get_access_service
from leadgate.core.errors import ValidationAppError
from leadgate.schemas.leads import (
    CacheInvalidationResponse,
    CacheStatsResponse,
    RateLimitStatusResponse,
)
from leadgate.services.access_service import AccessService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(verify_api_key)])

ServiceDep = Annotated[AccessService, Depends(get_access_service)]


@router.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats(service: ServiceDep) -> CacheStatsResponse:
    return CacheStatsResponse(**service.get_cache_stats())


@router.delete("/cache", response_model=CacheInvalidationResponse)
def invalidate_cache(
    service: ServiceDep,
    pattern: Annotated[
        str | None,
        Query(description="Glob pattern over cache keys (e.g. 'leads:*'); omit to drop everything."),
    ] = None,
    regex: Annotated[bool, Query(description="Treat pattern as a regular expression.")] = False,
) -> CacheInvalidationResponse:
    """Drop cached responses whose keys match ``pattern``.

    Raises:
        ValidationAppError: If ``regex=true`` and the pattern does not compile.
    """
    try:
        removed = service.invalidate_cache(pattern, regex=regex)
    except re.error as exc:
        raise ValidationAppError(
            code="invalid_cache_pattern",
            message=f"Invalid regular expression: {exc}",
        ) from exc
    return CacheInvalidationResponse(pattern=pattern, regex=regex, removed=removed)


@router.get("/rate-limit/status", response_model=RateLimitStatusResponse)
def rate_limit_status(service: ServiceDep) -> RateLimitStatusResponse:
    return RateLimitStatusResponse(**service.get_rate_limit_status())


@router.post("/rate-limit/reset", response_model=RateLimitStatusResponse)
def reset_rate_limit(service: ServiceDep) -> RateLimitStatusResponse:
    """Clear call history and any active block, then return the fresh status."""
    service.reset_rate_limiter()
    logger.warning("rate_limit.reset_requested")
    return RateLimitStatusResponse(**service.get_rate_limit_status())
