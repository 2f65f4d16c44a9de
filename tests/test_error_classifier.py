"""Unit tests for upstream failure classification and retry policy."""

from datetime import datetime, timedelta, timezone

import pytest

from leadgate.adapters.rate_limit import DenialReason, RateLimitDecision
from leadgate.adapters.transport import TransportError, TransportResponse
from leadgate.services.compliance import ComplianceLimits, DateRange, validate_date_range
from leadgate.services.error_classifier import (
    ErrorKind,
    RetryPolicy,
    classify,
    classify_transport_error,
    from_compliance,
    from_rate_limit,
    interpret_response,
    retry_delay,
    should_retry,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class TestClassify:
    def test_incorrect_key_is_terminal(self) -> None:
        error = classify(401, "incorrect")

        assert error.kind is ErrorKind.INVALID_CREDENTIAL
        assert error.retryable is False
        assert error.http_status == 401

    def test_five_minute_rule_is_retryable(self) -> None:
        error = classify(429, "It is advised to hit this API once in every 5 minutes")

        assert error.kind is ErrorKind.RATE_LIMIT_SHORT
        assert error.retryable is True
        assert error.retry_after_ms == 300_000

    @pytest.mark.parametrize(
        ("status", "message", "kind", "retry_after"),
        [
            (429, "Too Many Requests", ErrorKind.RATE_LIMIT_BLOCKED, 900),
            (429, "slow down", ErrorKind.RATE_LIMIT_SHORT, 300),
            (401, "Key has EXPIRED", ErrorKind.CREDENTIAL_EXPIRED, 0),
            (401, "", ErrorKind.INVALID_CREDENTIAL, 0),
            (204, "No leads found", ErrorKind.NO_RESULTS, 0),
            (204, "Data will be available after 24 hours", ErrorKind.NO_RESULTS, 86400),
            (400, "Date range should not exceed 7 days", ErrorKind.RANGE_TOO_LARGE, 0),
            (400, "Data older than 365 days cannot be fetched", ErrorKind.RANGE_TOO_LARGE, 0),
            (400, "Missing date parameters", ErrorKind.MISSING_PARAMETERS, 0),
            (400, "Invalid date format", ErrorKind.MALFORMED_DATE, 0),
            (500, "oops", ErrorKind.UPSTREAM_INTERNAL, 30),
            (503, None, ErrorKind.UPSTREAM_INTERNAL, 30),
            (418, "teapot", ErrorKind.UNKNOWN, 10),
            (400, "something else", ErrorKind.UNKNOWN, 10),
        ],
    )
    def test_rule_table(self, status: int, message: str | None, kind: ErrorKind, retry_after: float) -> None:
        error = classify(status, message)

        assert error.kind is kind
        assert error.retry_after_seconds == retry_after

    def test_keeps_upstream_wording(self) -> None:
        error = classify(401, "CRM key is incorrect")

        assert error.message == "CRM key is incorrect"
        assert error.suggestion

    def test_falls_back_to_profile_message(self) -> None:
        assert classify(500, None).message == "Upstream server error"

    def test_to_dict(self) -> None:
        data = classify(429, "5 minutes").to_dict()

        assert data["kind"] == "RATE_LIMIT_SHORT"
        assert data["retry_after"] == 300
        assert data["retryable"] is True

    def test_transport_error(self) -> None:
        error = classify_transport_error(TransportError("Upstream request timed out: ReadTimeout"))

        assert error.kind is ErrorKind.TRANSPORT_FAILURE
        assert error.retryable is True
        assert error.http_status is None
        assert "ReadTimeout" in error.message


class TestInterpretResponse:
    def test_success_body(self) -> None:
        response = TransportResponse(200, {"CODE": 200, "STATUS": "SUCCESS", "RESPONSE": []})

        assert interpret_response(response) is None

    def test_success_without_code(self) -> None:
        assert interpret_response(TransportResponse(200, {"RESPONSE": []})) is None

    def test_failure_inside_http_200(self) -> None:
        response = TransportResponse(
            200,
            {"CODE": 429, "STATUS": "FAILURE", "MESSAGE": "hit this API once in every 5 minutes"},
        )

        error = interpret_response(response)

        assert error.kind is ErrorKind.RATE_LIMIT_SHORT
        assert error.http_status == 429

    def test_string_code_is_coerced(self) -> None:
        error = interpret_response(TransportResponse(200, {"CODE": "401", "MESSAGE": "incorrect"}))

        assert error.kind is ErrorKind.INVALID_CREDENTIAL

    def test_http_status_used_without_body_code(self) -> None:
        error = interpret_response(TransportResponse(502, {"MESSAGE": "<html>Bad Gateway</html>"}))

        assert error.kind is ErrorKind.UPSTREAM_INTERNAL
        assert error.http_status == 502

    def test_failure_status_with_200_code_is_unknown(self) -> None:
        error = interpret_response(TransportResponse(200, {"CODE": 200, "STATUS": "FAILURE"}))

        assert error.kind is ErrorKind.UNKNOWN


class TestFromLocalDecisions:
    def test_from_compliance_maps_first_violation(self) -> None:
        result = validate_date_range(
            DateRange(NOW - timedelta(days=10), NOW),
            NOW,
            limits=ComplianceLimits(),
        )

        error = from_compliance(result)

        assert error.kind is ErrorKind.RANGE_TOO_LARGE
        assert error.retryable is False
        assert "7 days" in error.message

    @pytest.mark.parametrize(
        ("date_range", "kind"),
        [
            (DateRange(None, NOW), ErrorKind.MISSING_PARAMETERS),
            (DateRange(NOW - timedelta(hours=1), NOW + timedelta(hours=1)), ErrorKind.MALFORMED_DATE),
            (DateRange(NOW, NOW - timedelta(hours=1)), ErrorKind.MALFORMED_DATE),
            (DateRange(NOW - timedelta(days=370), NOW - timedelta(days=369)), ErrorKind.RANGE_TOO_LARGE),
        ],
    )
    def test_from_compliance_kinds(self, date_range: DateRange, kind: ErrorKind) -> None:
        result = validate_date_range(date_range, NOW, limits=ComplianceLimits())

        assert from_compliance(result).kind is kind

    def test_from_compliance_rejects_valid_result(self) -> None:
        result = validate_date_range(
            DateRange(NOW - timedelta(days=1), NOW), NOW, limits=ComplianceLimits()
        )

        with pytest.raises(ValueError):
            from_compliance(result)

    @pytest.mark.parametrize(
        ("reason", "kind"),
        [
            (DenialReason.BLOCKED, ErrorKind.RATE_LIMIT_BLOCKED),
            (DenialReason.HOURLY_LIMIT, ErrorKind.RATE_LIMIT_BLOCKED),
            (DenialReason.MINUTE_LIMIT, ErrorKind.RATE_LIMIT_SHORT),
            (DenialReason.MIN_INTERVAL, ErrorKind.RATE_LIMIT_SHORT),
        ],
    )
    def test_from_rate_limit(self, reason: DenialReason, kind: ErrorKind) -> None:
        decision = RateLimitDecision(False, reason, 42.5, "denied")

        error = from_rate_limit(decision)

        assert error.kind is kind
        assert error.retry_after_seconds == 42.5
        assert error.message == "denied"


class TestRetryPolicy:
    def test_terminal_errors_never_retry(self) -> None:
        assert should_retry(classify(401, "incorrect"), 1) is False
        assert retry_delay(classify(401, "incorrect"), 1) == 0

    def test_retryable_errors_stop_at_max_retries(self) -> None:
        error = classify(500, "boom")

        assert should_retry(error, 1) is True
        assert should_retry(error, 2) is True
        assert should_retry(error, 3) is False
        assert should_retry(error, 1, max_retries=1) is False

    def test_unknown_gets_a_single_retry(self) -> None:
        error = classify(418, "teapot")

        assert should_retry(error, 1) is True
        assert should_retry(error, 2) is False

    def test_backoff_doubles_and_caps(self) -> None:
        error = classify(500, "boom")

        assert [retry_delay(error, attempt) for attempt in (1, 2, 3, 4, 5)] == [30, 60, 120, 240, 300]

    def test_blocked_delay_is_capped(self) -> None:
        assert retry_delay(classify(429, "too many requests"), 1) == 300

    def test_custom_policy(self) -> None:
        policy = RetryPolicy(max_retries=5, max_delay_seconds=50)
        error = classify_transport_error(TransportError("ConnectError"))

        assert policy.should_retry(error, 4) is True
        assert policy.retry_delay(error, 3) == 40
        assert policy.retry_delay(error, 4) == 50

    @pytest.mark.parametrize("kwargs", [{"max_retries": 0}, {"max_delay_seconds": 0}])
    def test_invalid_policy(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)
