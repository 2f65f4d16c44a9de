"""Pytest configuration and fixtures shared across all test modules.

The environment is prepared before anything imports ``leadgate.core.config``
so settings never come from a developer's ``.env`` file.
"""

import os

# Must run before any leadgate import.
os.environ["TESTING"] = "true"

os.environ.setdefault("UPSTREAM_CRM_KEY", "test-crm-key-000")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

from datetime import datetime, timezone
from typing import Any

import pytest

from leadgate.adapters.rate_limit import RateLimitPolicy, SlidingWindowRateLimiter
from leadgate.adapters.transport import AbstractTransport, LeadQuery, TransportError, TransportResponse
from leadgate.services.access_service import AccessService
from leadgate.services.compliance import ComplianceLimits
from leadgate.services.error_classifier import RetryPolicy
from leadgate.utils.response_cache import ResponseCache

# 2024-06-15T12:00:00Z
NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeTime:
    """Deterministic clock shared by cache, limiter and service."""

    def __init__(self, start: float = NOW.timestamp()) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeSleep:
    """Records backoff delays and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeTime) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


class FakeTransport(AbstractTransport):
    """Transport replaying scripted responses (or raising scripted errors)."""

    def __init__(self, *outcomes: TransportResponse | BaseException) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[LeadQuery] = []
        self.closed = False

    async def send(self, params: LeadQuery) -> TransportResponse:
        self.calls.append(params)
        if not self.outcomes:
            raise AssertionError("unexpected upstream call")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


def success_body(leads: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    leads = leads if leads is not None else []
    return {
        "CODE": 200,
        "STATUS": "SUCCESS",
        "MESSAGE": "",
        "TOTAL_RECORDS": len(leads),
        "RESPONSE": leads,
    }


def ok(leads: list[dict[str, Any]] | None = None) -> TransportResponse:
    return TransportResponse(status_code=200, body=success_body(leads))


def failure(code: int, message: str, *, http_status: int = 200) -> TransportResponse:
    return TransportResponse(
        status_code=http_status,
        body={"CODE": code, "STATUS": "FAILURE", "MESSAGE": message},
    )


def transport_error(message: str = "ConnectError") -> TransportError:
    return TransportError(message)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def fake_sleep(fake_time: FakeTime) -> FakeSleep:
    return FakeSleep(fake_time)


@pytest.fixture
def make_service(fake_time: FakeTime, fake_sleep: FakeSleep):
    """Factory building an AccessService around a FakeTransport."""

    def _make(*outcomes: TransportResponse | BaseException, **overrides: Any) -> AccessService:
        transport = overrides.pop("transport", None)
        if transport is None:
            transport = FakeTransport(*outcomes)
        cache = overrides.pop("cache", None)
        if cache is None:
            cache = ResponseCache(clock=fake_time.time)
        limiter = overrides.pop("rate_limiter", None)
        if limiter is None:
            limiter = SlidingWindowRateLimiter(RateLimitPolicy(), clock=fake_time.time)
        return AccessService(
            transport,
            cache=cache,
            rate_limiter=limiter,
            retry_policy=overrides.pop("retry_policy", RetryPolicy()),
            limits=overrides.pop("limits", ComplianceLimits()),
            clock=fake_time.time,
            sleep=overrides.pop("sleep", fake_sleep),
            **overrides,
        )

    return _make
