"""Failure classification and retry policy for upstream calls.

The upstream reports most problems as a status code plus a free-text message
(often inside an HTTP 200 body). Classification matches ``(status, message
substring)`` rules in order and yields a ``ClassifiedError`` from a closed
taxonomy, each kind carrying a default wait and whether retrying can help.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from leadgate.adapters.rate_limit.base import DenialReason, RateLimitDecision
from leadgate.adapters.transport.base import TransportResponse
from leadgate.services.compliance import ComplianceResult, ViolationKind


class ErrorKind(str, Enum):
    RATE_LIMIT_SHORT = "RATE_LIMIT_SHORT"
    RATE_LIMIT_BLOCKED = "RATE_LIMIT_BLOCKED"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    CREDENTIAL_EXPIRED = "CREDENTIAL_EXPIRED"
    NO_RESULTS = "NO_RESULTS"
    RANGE_TOO_LARGE = "RANGE_TOO_LARGE"
    MISSING_PARAMETERS = "MISSING_PARAMETERS"
    MALFORMED_DATE = "MALFORMED_DATE"
    UPSTREAM_INTERNAL = "UPSTREAM_INTERNAL"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class KindProfile:
    retryable: bool
    retry_after_seconds: float
    message: str
    suggestion: str


KIND_PROFILES: dict[ErrorKind, KindProfile] = {
    ErrorKind.RATE_LIMIT_SHORT: KindProfile(
        True, 300.0,
        "Rate limit exceeded - the API can only be called once every 5 minutes",
        "Wait 5 minutes before retrying",
    ),
    ErrorKind.RATE_LIMIT_BLOCKED: KindProfile(
        True, 900.0,
        "Too many requests - API key suspended for 15 minutes",
        "Wait 15 minutes before retrying",
    ),
    ErrorKind.INVALID_CREDENTIAL: KindProfile(
        False, 0.0,
        "Invalid CRM key",
        "Verify UPSTREAM_CRM_KEY in the environment",
    ),
    ErrorKind.CREDENTIAL_EXPIRED: KindProfile(
        False, 0.0,
        "CRM key expired",
        "Generate a new key from the seller portal and update UPSTREAM_CRM_KEY",
    ),
    ErrorKind.NO_RESULTS: KindProfile(
        False, 0.0,
        "No leads found in the specified time range",
        "Try a different time range",
    ),
    ErrorKind.RANGE_TOO_LARGE: KindProfile(
        False, 0.0,
        "Requested date range exceeds upstream limits",
        "Shrink the range to at most 7 days within the last 365 days",
    ),
    ErrorKind.MISSING_PARAMETERS: KindProfile(
        False, 0.0,
        "Missing required date parameters",
        "Provide both start and end of the range",
    ),
    ErrorKind.MALFORMED_DATE: KindProfile(
        False, 0.0,
        "Invalid date format or ordering",
        "Use DD-MM-YYYYHH:MM:SS timestamps with start before end and end not in the future",
    ),
    ErrorKind.UPSTREAM_INTERNAL: KindProfile(
        True, 30.0,
        "Upstream server error",
        "Retry after 30 seconds or contact upstream support",
    ),
    ErrorKind.TRANSPORT_FAILURE: KindProfile(
        True, 10.0,
        "Network failure while calling the upstream",
        "Check connectivity and retry",
    ),
    ErrorKind.UNKNOWN: KindProfile(
        True, 10.0,
        "Unknown upstream error",
        "Check the upstream API documentation",
    ),
}

TERMINAL_KINDS = frozenset(kind for kind, profile in KIND_PROFILES.items() if not profile.retryable)
RATE_LIMIT_KINDS = frozenset({ErrorKind.RATE_LIMIT_SHORT, ErrorKind.RATE_LIMIT_BLOCKED})


@dataclass(frozen=True)
class ClassifiedError:
    """Typed failure surfaced to callers.

    Attributes:
        kind: Taxonomy member.
        http_status: Upstream status code, if one was received.
        message: Human-readable description.
        retryable: Whether retrying can change the outcome.
        retry_after_seconds: Suggested wait before the next attempt.
        suggestion: What the caller should do about it.
    """

    kind: ErrorKind
    http_status: int | None
    message: str
    retryable: bool
    retry_after_seconds: float
    suggestion: str

    @property
    def retry_after_ms(self) -> int:
        return int(round(self.retry_after_seconds * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "http_status": self.http_status,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after_seconds,
            "suggestion": self.suggestion,
        }


def make_error(
    kind: ErrorKind,
    http_status: int | None = None,
    *,
    message: str | None = None,
    retry_after_seconds: float | None = None,
    suggestion: str | None = None,
) -> ClassifiedError:
    """Build a ClassifiedError from the kind's profile with optional overrides."""
    profile = KIND_PROFILES[kind]
    return ClassifiedError(
        kind=kind,
        http_status=http_status,
        message=message or profile.message,
        retryable=profile.retryable,
        retry_after_seconds=profile.retry_after_seconds if retry_after_seconds is None else retry_after_seconds,
        suggestion=suggestion or profile.suggestion,
    )


@dataclass(frozen=True)
class _Rule:
    matches_status: Callable[[int], bool]
    needles: tuple[str, ...]
    kind: ErrorKind
    retry_after_seconds: float | None = None
    suggestion: str | None = None

    def matches(self, status: int, text: str) -> bool:
        if not self.matches_status(status):
            return False
        # Needles match at a word start, so "15 minutes" is not "5 minutes".
        return not self.needles or any(
            re.search(rf"\b{re.escape(needle)}", text) for needle in self.needles
        )


def _status(code: int) -> Callable[[int], bool]:
    return lambda status: status == code


# Order matters: specific wording first, then the per-status fallback.
_RULES: tuple[_Rule, ...] = (
    _Rule(_status(429), ("5 minutes",), ErrorKind.RATE_LIMIT_SHORT),
    _Rule(_status(429), ("too many requests",), ErrorKind.RATE_LIMIT_BLOCKED),
    _Rule(_status(429), (), ErrorKind.RATE_LIMIT_SHORT),
    _Rule(_status(401), ("expired",), ErrorKind.CREDENTIAL_EXPIRED),
    _Rule(_status(401), (), ErrorKind.INVALID_CREDENTIAL),
    _Rule(
        _status(204), ("available after 24 hours",), ErrorKind.NO_RESULTS,
        retry_after_seconds=86400.0,
        suggestion="Historical data is not available yet; wait 24 hours or fetch recent data",
    ),
    _Rule(_status(204), (), ErrorKind.NO_RESULTS),
    _Rule(_status(400), ("365 days", "7 days", "date range"), ErrorKind.RANGE_TOO_LARGE),
    _Rule(_status(400), ("date parameters", "missing"), ErrorKind.MISSING_PARAMETERS),
    _Rule(_status(400), ("date format",), ErrorKind.MALFORMED_DATE),
    _Rule(lambda status: status >= 500, (), ErrorKind.UPSTREAM_INTERNAL),
)


def classify(http_status: int, message: str | None) -> ClassifiedError:
    """Map an upstream status and message to a ClassifiedError.

    Matching is case-insensitive on message substrings. The upstream's own
    message is kept when present so callers see its exact wording.

    Args:
        http_status: Status code reported by the upstream.
        message: Message reported by the upstream (may be empty).

    Returns:
        ClassifiedError for the first matching rule, ``UNKNOWN`` otherwise.
    """
    text = (message or "").lower()
    for rule in _RULES:
        if rule.matches(http_status, text):
            return make_error(
                rule.kind,
                http_status,
                message=message or None,
                retry_after_seconds=rule.retry_after_seconds,
                suggestion=rule.suggestion,
            )
    return make_error(ErrorKind.UNKNOWN, http_status, message=message or None)


def classify_transport_error(exc: BaseException) -> ClassifiedError:
    detail = str(exc) or type(exc).__name__
    return make_error(ErrorKind.TRANSPORT_FAILURE, message=f"Network failure: {detail}")


def _coerce_status(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def interpret_response(response: TransportResponse) -> ClassifiedError | None:
    """Decide whether an upstream reply is a success.

    The upstream signals failures inside the body (``CODE``/``STATUS``/
    ``MESSAGE``) even when the HTTP status is 200.

    Returns:
        None on success, otherwise the classified failure.
    """
    body = response.body or {}
    body_code = _coerce_status(body.get("CODE"))
    body_status = str(body.get("STATUS") or "").upper()
    message = body.get("MESSAGE")
    message = str(message) if message is not None else None

    if 200 <= response.status_code < 300 and body_code in (None, 200) and body_status != "FAILURE":
        return None

    if body_code is not None and body_code != 200:
        return classify(body_code, message)
    return classify(response.status_code, message)


_COMPLIANCE_KIND_MAP: dict[ViolationKind, ErrorKind] = {
    ViolationKind.MISSING_BOUND: ErrorKind.MISSING_PARAMETERS,
    ViolationKind.RANGE_TOO_LONG: ErrorKind.RANGE_TOO_LARGE,
    ViolationKind.TOO_HISTORICAL: ErrorKind.RANGE_TOO_LARGE,
    ViolationKind.INVERTED_RANGE: ErrorKind.MALFORMED_DATE,
    ViolationKind.FUTURE_END: ErrorKind.MALFORMED_DATE,
}


def from_compliance(result: ComplianceResult) -> ClassifiedError:
    """Terminal error describing a rejected date range (first violation decides the kind).

    Raises:
        ValueError: If the result has no violations.
    """
    if result.valid:
        raise ValueError("compliance result has no violations")
    kind = _COMPLIANCE_KIND_MAP[result.violations[0].kind]
    message = "Date range is not compliant: " + "; ".join(v.message for v in result.violations)
    return make_error(kind, message=message)


def from_rate_limit(decision: RateLimitDecision) -> ClassifiedError:
    """Error describing a local rate-limit denial, carrying the decision's wait."""
    if decision.allowed:
        raise ValueError("decision allows the call")
    if decision.reason in (DenialReason.BLOCKED, DenialReason.HOURLY_LIMIT):
        kind = ErrorKind.RATE_LIMIT_BLOCKED
    else:
        kind = ErrorKind.RATE_LIMIT_SHORT
    return make_error(
        kind,
        message=decision.message,
        retry_after_seconds=decision.retry_after_seconds,
        suggestion=f"Wait {decision.retry_after_seconds:.0f} seconds before calling again",
    )


class RetryPolicy:
    """Retry decisions with capped exponential backoff.

    Attributes:
        max_retries: Attempt count at which retrying stops.
        max_delay_seconds: Upper bound for any single delay.
        unknown_retry_limit: Attempts after which ``UNKNOWN`` errors stop retrying.
    """

    def __init__(
        self,
        max_retries: int = 3,
        max_delay_seconds: float = 300.0,
        *,
        unknown_retry_limit: int = 2,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if max_delay_seconds <= 0:
            raise ValueError("max_delay_seconds must be > 0")
        self.max_retries = max_retries
        self.max_delay_seconds = max_delay_seconds
        self.unknown_retry_limit = unknown_retry_limit

    def should_retry(self, error: ClassifiedError, attempt: int, max_retries: int | None = None) -> bool:
        """Whether another attempt should follow attempt number ``attempt`` (1-based)."""
        limit = self.max_retries if max_retries is None else max_retries
        if attempt >= limit or not error.retryable:
            return False
        if error.kind is ErrorKind.UNKNOWN and attempt >= self.unknown_retry_limit:
            return False
        return True

    def retry_delay(self, error: ClassifiedError, attempt: int) -> float:
        """Backoff before the attempt following ``attempt``: base * 2^(attempt-1), capped."""
        if not error.retryable:
            return 0.0
        base = error.retry_after_seconds or KIND_PROFILES[error.kind].retry_after_seconds
        multiplier = 2 ** max(attempt - 1, 0)
        return min(base * multiplier, self.max_delay_seconds)


DEFAULT_RETRY_POLICY = RetryPolicy()


def should_retry(error: ClassifiedError, attempt: int, max_retries: int = 3) -> bool:
    return DEFAULT_RETRY_POLICY.should_retry(error, attempt, max_retries)


def retry_delay(error: ClassifiedError, attempt: int) -> float:
    return DEFAULT_RETRY_POLICY.retry_delay(error, attempt)
