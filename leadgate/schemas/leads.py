"""Pydantic schemas for lead query and admin responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class LeadsResponse(BaseModel):
    """Lead listing returned by the upstream, plus access metadata."""

    total_records: int = Field(
        0,
        description="Number of leads reported by the upstream for the window.",
    )
    leads: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Lead records exactly as returned by the upstream.",
    )
    message: str | None = Field(
        default=None,
        description="Upstream message, when one was sent.",
    )
    from_cache: bool = Field(
        False,
        description="True when the response was served without calling the upstream.",
    )
    attempts: int = Field(
        0,
        ge=0,
        description="Attempts that reached the upstream for this request (0 when cached).",
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking notes about the requested range (e.g. limited availability).",
    )

    @classmethod
    def from_body(
        cls,
        body: dict[str, Any] | None,
        *,
        from_cache: bool,
        attempts: int,
        warnings: list[str],
    ) -> "LeadsResponse":
        body = body or {}
        leads = body.get("RESPONSE") or []
        if not isinstance(leads, list):
            leads = [leads]
        total = body.get("TOTAL_RECORDS")
        try:
            total_records = int(total) if total is not None else len(leads)
        except (TypeError, ValueError):
            total_records = len(leads)
        return cls(
            total_records=total_records,
            leads=leads,
            message=body.get("MESSAGE") or None,
            from_cache=from_cache,
            attempts=attempts,
            warnings=warnings,
        )


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    evictions: int
    expirations: int
    size: int
    max_entries: int
    total_requests: int
    hit_rate: float = Field(..., ge=0, le=100, description="Percentage of lookups that hit.")
    miss_rate: float = Field(..., ge=0, le=100, description="Percentage of lookups that missed.")


class CacheInvalidationResponse(BaseModel):
    pattern: str | None = Field(None, description="Pattern used; null means everything was dropped.")
    regex: bool = False
    removed: int = Field(..., ge=0)


class RateLimitStatusResponse(BaseModel):
    """Snapshot of the outbound call limiter."""

    allowed: bool
    reason: str
    retry_after_seconds: float
    message: str
    calls_last_minute: int
    calls_last_hour: int
    minute_limit: int
    hour_limit: int
    min_interval_seconds: float
    is_blocked: bool
    blocked_until: float | None = None
    last_call_time: float | None = None
    successful_calls: int
    failed_calls: int
