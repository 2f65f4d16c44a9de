"""Wiring of the access service from settings, and its FastAPI dependency."""

from __future__ import annotations

from fastapi import Request

from leadgate.adapters.rate_limit import (
    AbstractStateStore,
    InMemoryStateStore,
    JsonFileStateStore,
    RateLimitPolicy,
    SlidingWindowRateLimiter,
)
from leadgate.adapters.transport import AbstractTransport, create_transport
from leadgate.core.config import Settings, settings
from leadgate.services.access_service import AccessService
from leadgate.services.compliance import ComplianceLimits
from leadgate.services.error_classifier import RetryPolicy
from leadgate.utils.response_cache import ResponseCache


def build_state_store(cfg: Settings | None = None) -> AbstractStateStore:
    cfg = cfg or settings
    if cfg.rate_limit.state_file:
        return JsonFileStateStore(cfg.rate_limit.state_file)
    return InMemoryStateStore()


def build_access_service(
    cfg: Settings | None = None,
    *,
    transport: AbstractTransport | None = None,
) -> AccessService:
    """Assemble an AccessService from configuration.

    Args:
        cfg: Settings to read; defaults to the global settings.
        transport: Transport to use instead of the configured httpx one.

    Raises:
        ValidationAppError: If no transport is given and the CRM key is missing.
    """
    cfg = cfg or settings
    limiter_cfg = cfg.rate_limit

    rate_limiter = SlidingWindowRateLimiter(
        RateLimitPolicy(
            min_interval_seconds=limiter_cfg.min_interval_seconds,
            max_per_minute=limiter_cfg.max_per_minute,
            max_per_hour=limiter_cfg.max_per_hour,
            block_duration_seconds=limiter_cfg.block_duration_seconds,
        ),
        store=build_state_store(cfg),
    )
    cache = ResponseCache(
        max_entries=cfg.cache.max_entries,
        default_ttl_seconds=cfg.cache.default_ttl_seconds,
    )

    return AccessService(
        transport or create_transport(cfg.upstream),
        cache=cache,
        rate_limiter=rate_limiter,
        retry_policy=RetryPolicy(
            max_retries=cfg.retry.max_retries,
            max_delay_seconds=cfg.retry.max_delay_seconds,
        ),
        limits=ComplianceLimits.from_settings(cfg.compliance),
    )


def get_access_service(request: Request) -> AccessService:
    """Return the service built for this application instance."""
    return request.app.state.access_service
