"""Access orchestration for upstream lead queries.

The service composes the pieces that keep the upstream API key healthy:

- Date-range compliance validation before anything else
- Response caching keyed by the logical request
- Local call-cadence enforcement (sliding windows and blocking)
- Failure classification with bounded, backed-off retries

Results are returned as typed ``AccessResult`` values; callers at the HTTP
boundary turn failures into exceptions with ``raise_for_error()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from leadgate.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision
from leadgate.adapters.transport.base import AbstractTransport, LeadQuery, TransportError, TransportResponse
from leadgate.core.errors import (
    ComplianceAppError,
    ErrorDetails,
    RateLimitedAppError,
    UpstreamAppError,
)
from leadgate.services.compliance import (
    ComplianceLimits,
    ComplianceResult,
    DateRange,
    day_range,
    last_days_range,
    today_range,
    validate_date_range,
    yesterday_range,
)
from leadgate.services.error_classifier import (
    RATE_LIMIT_KINDS,
    ClassifiedError,
    ErrorKind,
    RetryPolicy,
    classify_transport_error,
    from_compliance,
    from_rate_limit,
    interpret_response,
)
from leadgate.utils.response_cache import ResponseCache, build_cache_key

logger = logging.getLogger(__name__)

CACHE_PREFIX = "leads"

RequestFn = Callable[[LeadQuery], Awaitable[TransportResponse]]


class AccessStatus(str, Enum):
    OK = "OK"
    REJECTED = "REJECTED"
    RATE_LIMITED = "RATE_LIMITED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AccessResult:
    """Outcome of one logical request.

    Attributes:
        status: Overall outcome.
        data: Upstream body on success (possibly from cache).
        error: Classified failure when the status is not ``OK``.
        from_cache: True when served without reaching the upstream.
        attempts: Number of attempts that reached the transport.
        cache_key: Key used for the cache lookup (None when rejected).
        compliance: Validation outcome for the requested range.
    """

    status: AccessStatus
    data: dict[str, Any] | None = None
    error: ClassifiedError | None = None
    from_cache: bool = False
    attempts: int = 0
    cache_key: str | None = None
    compliance: ComplianceResult | None = None

    @property
    def ok(self) -> bool:
        return self.status is AccessStatus.OK

    def _details(self) -> ErrorDetails:
        details: ErrorDetails = {"attempts": self.attempts}
        if self.error is not None:
            details.update(
                kind=self.error.kind.value,
                retryable=self.error.retryable,
                retry_after=self.error.retry_after_seconds,
                suggestion=self.error.suggestion,
                http_status=self.error.http_status,
            )
        if self.compliance is not None and self.compliance.violations:
            details["violations"] = self.compliance.to_dict()["violations"]
        return details

    def raise_for_error(self) -> None:
        """Raise the AppError matching a non-OK status; no-op on success.

        Raises:
            ComplianceAppError: The range was rejected before any call.
            RateLimitedAppError: The local limiter denied the call.
            UpstreamAppError: The upstream call failed after retries.
        """
        if self.ok:
            return
        message = self.error.message if self.error else self.status.value
        if self.status is AccessStatus.REJECTED:
            raise ComplianceAppError(code="date_range_not_compliant", message=message, details=self._details())
        if self.status is AccessStatus.RATE_LIMITED:
            raise RateLimitedAppError(code="rate_limited", message=message, details=self._details())
        code = f"upstream_{self.error.kind.value.lower()}" if self.error else "upstream_failed"
        raise UpstreamAppError(code=code, message=message, details=self._details())


class AccessService:
    """Gatekeeper between callers and the lead upstream.

    Every collaborator is injected, including the clock and the sleep used
    for backoff, so behaviour is deterministic under test.
    """

    def __init__(
        self,
        transport: AbstractTransport,
        *,
        cache: ResponseCache,
        rate_limiter: AbstractRateLimiter,
        retry_policy: RetryPolicy | None = None,
        limits: ComplianceLimits | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        cache_ttl_seconds: float | None = None,
    ) -> None:
        self.transport = transport
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.limits = limits or ComplianceLimits.from_settings()
        self._clock = clock
        self._sleep = sleep
        self.cache_ttl_seconds = cache_ttl_seconds

    def _now_dt(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def check_and_call(
        self,
        date_range: DateRange,
        request_fn: RequestFn | None = None,
        *,
        page: int | None = None,
        max_retries: int | None = None,
    ) -> AccessResult:
        """Run one logical request through validation, cache, limiter and retries.

        Args:
            date_range: Window to query.
            request_fn: Coroutine performing the call; defaults to ``transport.send``.
            page: Optional upstream page number (part of the cache key).
            max_retries: Overrides the policy's attempt limit for this request.

        Returns:
            AccessResult describing the outcome.
        """
        compliance = validate_date_range(date_range, self._now_dt(), limits=self.limits)
        if not compliance.valid:
            logger.info(
                "access.rejected",
                extra={"violations": [kind.value for kind in compliance.kinds]},
            )
            return AccessResult(
                status=AccessStatus.REJECTED,
                error=from_compliance(compliance),
                compliance=compliance,
            )

        cache_key = build_cache_key(
            CACHE_PREFIX, {"start": date_range.start, "end": date_range.end, "page": page}
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return AccessResult(
                status=AccessStatus.OK,
                data=cached,
                from_cache=True,
                cache_key=cache_key,
                compliance=compliance,
            )

        send = request_fn or self.transport.send
        params: LeadQuery = {"start": date_range.start, "end": date_range.end, "page": page}
        attempts = 0
        last_error: ClassifiedError | None = None

        while True:
            decision = self.rate_limiter.can_call(self._clock())
            if not decision.allowed:
                return self._denied(decision, attempts, last_error, cache_key, compliance)

            attempts += 1
            try:
                response = await send(params)
            except TransportError as exc:
                last_error = classify_transport_error(exc)
            else:
                last_error = interpret_response(response)
                if last_error is None:
                    data = response.body
                    self.cache.set(cache_key, data, self.cache_ttl_seconds)
                    self.rate_limiter.record_call(self._clock(), success=True)
                    logger.info(
                        "access.succeeded",
                        extra={"cache_key": cache_key, "attempts": attempts},
                    )
                    return AccessResult(
                        status=AccessStatus.OK,
                        data=data,
                        attempts=attempts,
                        cache_key=cache_key,
                        compliance=compliance,
                    )
                if last_error.kind is ErrorKind.RATE_LIMIT_BLOCKED:
                    now = self._clock()
                    self.rate_limiter.block(now, last_error.retry_after_seconds)
                    # No retry can pass before the block lifts.
                    return self._denied(
                        self.rate_limiter.can_call(now), attempts, last_error, cache_key, compliance
                    )

            if not self.retry_policy.should_retry(last_error, attempts, max_retries):
                break

            delay = self.retry_policy.retry_delay(last_error, attempts)
            logger.warning(
                "access.retry_scheduled",
                extra={"kind": last_error.kind.value, "attempt": attempts, "delay_s": delay},
            )
            await self._sleep(delay)

        if last_error.kind not in RATE_LIMIT_KINDS:
            self.rate_limiter.record_call(self._clock(), success=False)
        logger.error(
            "access.failed",
            extra={"kind": last_error.kind.value, "attempts": attempts, "http_status": last_error.http_status},
        )
        return AccessResult(
            status=AccessStatus.FAILED,
            error=last_error,
            attempts=attempts,
            cache_key=cache_key,
            compliance=compliance,
        )

    def _denied(
        self,
        decision: RateLimitDecision,
        attempts: int,
        last_error: ClassifiedError | None,
        cache_key: str,
        compliance: ComplianceResult,
    ) -> AccessResult:
        """Build the RATE_LIMITED result, recording a failed upstream attempt if one was made."""
        if attempts and last_error is not None and last_error.kind not in RATE_LIMIT_KINDS:
            self.rate_limiter.record_call(self._clock(), success=False)
        logger.warning(
            "access.rate_limited",
            extra={
                "reason": decision.reason.value,
                "retry_after_s": decision.retry_after_seconds,
                "attempts": attempts,
            },
        )
        return AccessResult(
            status=AccessStatus.RATE_LIMITED,
            error=from_rate_limit(decision),
            attempts=attempts,
            cache_key=cache_key,
            compliance=compliance,
        )

    async def fetch_today(self, **kwargs: Any) -> AccessResult:
        return await self.check_and_call(today_range(self._now_dt()), **kwargs)

    async def fetch_yesterday(self, **kwargs: Any) -> AccessResult:
        return await self.check_and_call(yesterday_range(self._now_dt()), **kwargs)

    async def fetch_for_day(self, day: date, **kwargs: Any) -> AccessResult:
        return await self.check_and_call(day_range(day), **kwargs)

    async def fetch_last_days(self, days: int, **kwargs: Any) -> AccessResult:
        """Query the trailing ``days`` (clamped to the maximum span)."""
        return await self.check_and_call(
            last_days_range(self._now_dt(), days, limits=self.limits), **kwargs
        )

    def get_cache_stats(self) -> dict[str, int | float]:
        return self.cache.stats().to_dict()

    def get_rate_limit_status(self) -> dict[str, Any]:
        return self.rate_limiter.status(self._clock()).to_dict()

    def invalidate_cache(self, pattern: str | None = None, *, regex: bool = False) -> int:
        return self.cache.invalidate(pattern, regex=regex)

    def reset_rate_limiter(self) -> None:
        self.rate_limiter.reset()

    def health(self) -> dict[str, Any]:
        """Component health for operators.

        The service is ``degraded`` while the limiter is blocked; cache and
        limiter snapshots are included as-is.
        """
        limiter = self.get_rate_limit_status()
        cache = self.get_cache_stats()
        status = "degraded" if limiter["is_blocked"] else "healthy"
        return {
            "status": status,
            "components": {
                "cache": {"status": "healthy", **cache},
                "rate_limiter": {"status": "blocked" if limiter["is_blocked"] else "healthy", **limiter},
            },
        }
