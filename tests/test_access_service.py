"""Tests for AccessService orchestration."""

import asyncio
from datetime import date, timedelta
from unittest.mock import Mock

import pytest

from conftest import NOW, FakeTransport, failure, ok, transport_error
from leadgate.adapters.rate_limit import RateLimitPolicy, SlidingWindowRateLimiter
from leadgate.core.errors import ComplianceAppError, RateLimitedAppError, UpstreamAppError
from leadgate.services.access_service import AccessStatus
from leadgate.services.compliance import DateRange
from leadgate.services.error_classifier import ErrorKind, RetryPolicy
from leadgate.utils.date_format import UPSTREAM_TZ

TWO_DAYS = DateRange(start=NOW - timedelta(days=2), end=NOW - timedelta(minutes=5))
LEADS = [{"UNIQUE_QUERY_ID": str(i), "SENDER_NAME": f"Buyer {i}"} for i in range(3)]


def _wrapped_limiter(fake_time) -> Mock:
    return Mock(wraps=SlidingWindowRateLimiter(RateLimitPolicy(), clock=fake_time.time))


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_success_is_cached_and_recorded_once(self, make_service, fake_time) -> None:
        limiter = _wrapped_limiter(fake_time)
        service = make_service(ok(LEADS), rate_limiter=limiter)

        first = await service.check_and_call(TWO_DAYS)

        assert first.status is AccessStatus.OK
        assert first.ok is True
        assert first.from_cache is False
        assert first.attempts == 1
        assert first.data["RESPONSE"] == LEADS
        assert limiter.record_call.call_count == 1
        assert limiter.record_call.call_args.kwargs == {"success": True}
        assert service.cache.has(first.cache_key)

        fake_time.advance(60)
        limiter.reset_mock()
        second = await service.check_and_call(TWO_DAYS)

        assert second.status is AccessStatus.OK
        assert second.from_cache is True
        assert second.attempts == 0
        assert second.data == first.data
        limiter.can_call.assert_not_called()
        limiter.record_call.assert_not_called()
        assert len(service.transport.calls) == 1

    @pytest.mark.asyncio
    async def test_transport_receives_bounds_and_page(self, make_service) -> None:
        service = make_service(ok())

        result = await service.check_and_call(TWO_DAYS, page=2)

        assert service.transport.calls == [{"start": TWO_DAYS.start, "end": TWO_DAYS.end, "page": 2}]
        assert "page=2" in result.cache_key

    @pytest.mark.asyncio
    async def test_custom_request_fn_is_used(self, make_service) -> None:
        service = make_service()
        seen = []

        async def request_fn(params):
            seen.append(params)
            return ok(LEADS)

        result = await service.check_and_call(TWO_DAYS, request_fn)

        assert result.ok
        assert len(seen) == 1
        assert service.transport.calls == []

    @pytest.mark.asyncio
    async def test_cache_ttl_override(self, make_service, fake_time) -> None:
        service = make_service(ok(), ok(), cache_ttl_seconds=30)

        await service.check_and_call(TWO_DAYS)
        fake_time.advance(400)
        again = await service.check_and_call(TWO_DAYS)

        assert again.from_cache is False
        assert len(service.transport.calls) == 2


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_repeat_within_min_interval_is_denied(self, make_service, fake_time) -> None:
        service = make_service(ok(LEADS))
        await service.check_and_call(TWO_DAYS)

        fake_time.advance(42)
        other_range = DateRange(TWO_DAYS.start - timedelta(hours=1), TWO_DAYS.end)
        result = await service.check_and_call(other_range)

        assert result.status is AccessStatus.RATE_LIMITED
        assert result.error.kind is ErrorKind.RATE_LIMIT_SHORT
        assert result.error.retry_after_seconds == pytest.approx(300 - 42)
        assert result.attempts == 0
        assert len(service.transport.calls) == 1

    @pytest.mark.asyncio
    async def test_upstream_block_puts_limiter_in_blocked_state(self, make_service, fake_sleep) -> None:
        service = make_service(failure(429, "Too many requests. Key suspended for 15 minutes"))

        result = await service.check_and_call(TWO_DAYS)

        assert fake_sleep.delays == []
        assert result.status is AccessStatus.RATE_LIMITED
        assert result.attempts == 1
        assert result.error.kind is ErrorKind.RATE_LIMIT_BLOCKED
        assert result.error.retry_after_seconds == pytest.approx(900)
        status = service.get_rate_limit_status()
        assert status["is_blocked"] is True
        assert status["failed_calls"] == 0
        assert len(service.transport.calls) == 1

    @pytest.mark.asyncio
    async def test_upstream_rate_limit_rejections_are_not_recorded(self, make_service, fake_sleep) -> None:
        message = "It is advised to hit this API once in every 5 minutes"
        service = make_service(failure(429, message), failure(429, message), failure(429, message))

        result = await service.check_and_call(TWO_DAYS)

        assert result.status is AccessStatus.FAILED
        assert result.attempts == 3
        assert fake_sleep.delays == [300, 300]
        status = service.get_rate_limit_status()
        assert status["failed_calls"] == 0
        assert status["last_call_time"] is None


    @pytest.mark.asyncio
    async def test_failed_attempt_is_recorded_when_retry_is_denied(self, make_service, fake_time) -> None:
        delays = []

        async def sleep_while_another_caller_hits_upstream(seconds: float) -> None:
            delays.append(seconds)
            service.rate_limiter.record_call(fake_time.time(), success=True)
            fake_time.advance(seconds)

        service = make_service(
            failure(500, "Internal error"), ok(LEADS), sleep=sleep_while_another_caller_hits_upstream
        )

        result = await service.check_and_call(TWO_DAYS)

        assert delays == [30]
        assert result.status is AccessStatus.RATE_LIMITED
        assert result.error.kind is ErrorKind.RATE_LIMIT_SHORT
        assert result.attempts == 1
        assert len(service.transport.calls) == 1
        status = service.get_rate_limit_status()
        assert status["failed_calls"] == 1
        assert status["successful_calls"] == 1
        assert status["calls_last_hour"] == 2


class TestRetries:
    @pytest.mark.asyncio
    async def test_server_error_then_success(self, make_service, fake_sleep) -> None:
        service = make_service(failure(500, "Internal error"), ok(LEADS))

        result = await service.check_and_call(TWO_DAYS)

        assert result.status is AccessStatus.OK
        assert result.attempts == 2
        assert fake_sleep.delays == [30]
        status = service.get_rate_limit_status()
        assert status["successful_calls"] == 1
        assert status["failed_calls"] == 0

    @pytest.mark.asyncio
    async def test_transport_failures_exhaust_retries(self, make_service, fake_sleep) -> None:
        service = make_service(transport_error(), transport_error(), transport_error())

        result = await service.check_and_call(TWO_DAYS)

        assert result.status is AccessStatus.FAILED
        assert result.error.kind is ErrorKind.TRANSPORT_FAILURE
        assert result.attempts == 3
        assert fake_sleep.delays == [10, 20]
        assert service.get_rate_limit_status()["failed_calls"] == 1
        assert service.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_terminal_error_is_not_retried(self, make_service, fake_sleep) -> None:
        service = make_service(failure(401, "CRM key is incorrect"))

        result = await service.check_and_call(TWO_DAYS)

        assert result.status is AccessStatus.FAILED
        assert result.error.kind is ErrorKind.INVALID_CREDENTIAL
        assert result.attempts == 1
        assert fake_sleep.delays == []
        assert service.get_rate_limit_status()["failed_calls"] == 1

    @pytest.mark.asyncio
    async def test_no_results_is_terminal(self, make_service, fake_sleep) -> None:
        service = make_service(failure(204, "There are no leads in the given time duration"))

        result = await service.check_and_call(TWO_DAYS)

        assert result.error.kind is ErrorKind.NO_RESULTS
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_unknown_error_retried_once(self, make_service, fake_sleep) -> None:
        service = make_service(failure(418, "?"), failure(418, "?"), ok())

        result = await service.check_and_call(TWO_DAYS)

        assert result.status is AccessStatus.FAILED
        assert result.error.kind is ErrorKind.UNKNOWN
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_max_retries_override(self, make_service, fake_sleep) -> None:
        service = make_service(transport_error(), ok())

        result = await service.check_and_call(TWO_DAYS, max_retries=1)

        assert result.status is AccessStatus.FAILED
        assert result.attempts == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_custom_retry_policy(self, make_service, fake_sleep) -> None:
        service = make_service(
            failure(500, "a"), failure(500, "b"), failure(500, "c"), ok(),
            retry_policy=RetryPolicy(max_retries=4, max_delay_seconds=45),
        )

        result = await service.check_and_call(TWO_DAYS)

        assert result.ok
        assert fake_sleep.delays == [30, 45, 45]


class TestRejection:
    @pytest.mark.asyncio
    async def test_non_compliant_range_touches_nothing(self, make_service, fake_time) -> None:
        limiter = _wrapped_limiter(fake_time)
        service = make_service(rate_limiter=limiter)

        result = await service.check_and_call(DateRange(NOW - timedelta(days=10), NOW))

        assert result.status is AccessStatus.REJECTED
        assert result.error.kind is ErrorKind.RANGE_TOO_LARGE
        assert result.cache_key is None
        assert result.compliance.valid is False
        assert service.get_cache_stats()["total_requests"] == 0
        limiter.can_call.assert_not_called()
        limiter.record_call.assert_not_called()
        assert service.transport.calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_transport_call_leaves_state_untouched(self, make_service) -> None:
        service = make_service(asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await service.check_and_call(TWO_DAYS)

        status = service.get_rate_limit_status()
        assert status["last_call_time"] is None
        assert status["failed_calls"] == 0
        assert service.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_cancelled_backoff_records_nothing(self, make_service, fake_time) -> None:
        async def cancelled_sleep(seconds: float) -> None:
            raise asyncio.CancelledError()

        service = make_service(failure(500, "boom"), sleep=cancelled_sleep)

        with pytest.raises(asyncio.CancelledError):
            await service.check_and_call(TWO_DAYS)

        assert service.get_rate_limit_status()["last_call_time"] is None


class TestRaiseForError:
    @pytest.mark.asyncio
    async def test_ok_does_not_raise(self, make_service) -> None:
        result = await make_service(ok()).check_and_call(TWO_DAYS)

        result.raise_for_error()

    @pytest.mark.asyncio
    async def test_rejection_raises_compliance_error(self, make_service) -> None:
        result = await make_service().check_and_call(DateRange(None, NOW))

        with pytest.raises(ComplianceAppError) as exc_info:
            result.raise_for_error()

        details = exc_info.value.details
        assert exc_info.value.code == "date_range_not_compliant"
        assert details["kind"] == "MISSING_PARAMETERS"
        assert details["retryable"] is False
        assert [v["kind"] for v in details["violations"]] == ["MISSING_BOUND"]

    @pytest.mark.asyncio
    async def test_denial_raises_rate_limited_error(self, make_service, fake_time) -> None:
        service = make_service(ok())
        await service.check_and_call(TWO_DAYS)
        service.invalidate_cache()

        result = await service.check_and_call(TWO_DAYS)

        with pytest.raises(RateLimitedAppError) as exc_info:
            result.raise_for_error()
        assert exc_info.value.details["retry_after"] == pytest.approx(300)
        assert exc_info.value.details["retryable"] is True

    @pytest.mark.asyncio
    async def test_failure_raises_upstream_error(self, make_service) -> None:
        result = await make_service(failure(401, "key expired")).check_and_call(TWO_DAYS)

        with pytest.raises(UpstreamAppError) as exc_info:
            result.raise_for_error()
        assert exc_info.value.code == "upstream_credential_expired"
        assert exc_info.value.details["attempts"] == 1


class TestConvenienceAndAdmin:
    @pytest.mark.asyncio
    async def test_fetch_yesterday(self, make_service) -> None:
        service = make_service(ok())

        result = await service.fetch_yesterday()

        assert result.ok
        start = service.transport.calls[0]["start"]
        assert start.astimezone(UPSTREAM_TZ).date() == date(2024, 6, 14)

    @pytest.mark.asyncio
    async def test_fetch_today_ends_now(self, make_service) -> None:
        service = make_service(ok())

        await service.fetch_today()

        assert service.transport.calls[0]["end"] == NOW

    @pytest.mark.asyncio
    async def test_fetch_for_day(self, make_service) -> None:
        service = make_service(ok())

        result = await service.fetch_for_day(date(2024, 6, 10), page=3)

        assert result.ok
        assert service.transport.calls[0]["page"] == 3

    @pytest.mark.asyncio
    async def test_fetch_last_days_is_clamped(self, make_service) -> None:
        service = make_service(ok())

        result = await service.fetch_last_days(30)

        call = service.transport.calls[0]
        assert result.ok
        assert call["end"] - call["start"] == timedelta(days=7)

    @pytest.mark.asyncio
    async def test_health_reports_block(self, make_service) -> None:
        service = make_service()
        assert service.health()["status"] == "healthy"

        service.rate_limiter.block(duration_seconds=900)
        health = service.health()

        assert health["status"] == "degraded"
        assert health["components"]["rate_limiter"]["status"] == "blocked"
        assert health["components"]["cache"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_reset_and_invalidate(self, make_service) -> None:
        service = make_service(ok(), ok())
        await service.check_and_call(TWO_DAYS)

        assert service.invalidate_cache("leads:*") == 1
        service.reset_rate_limiter()

        again = await service.check_and_call(TWO_DAYS)
        assert again.ok
        assert again.from_cache is False

    def test_fake_transport_closes(self) -> None:
        transport = FakeTransport()
        asyncio.run(transport.aclose())
        assert transport.closed is True
