"""Date-range compliance checks for the lead upstream.

The upstream only serves bounded windows: at most ``max_span`` between the
bounds and nothing older than ``max_history``. Validation is pure and
collects every violation instead of stopping at the first one, so a caller
can fix all problems in one pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum

from leadgate.core.config import ComplianceSettings, settings
from leadgate.utils.date_format import UPSTREAM_TZ, as_utc

_SECONDS_PER_DAY = 86400.0


class ViolationKind(str, Enum):
    MISSING_BOUND = "MISSING_BOUND"
    INVERTED_RANGE = "INVERTED_RANGE"
    RANGE_TOO_LONG = "RANGE_TOO_LONG"
    TOO_HISTORICAL = "TOO_HISTORICAL"
    FUTURE_END = "FUTURE_END"


@dataclass(frozen=True)
class DateRange:
    """Requested query window. Naive datetimes are interpreted as UTC."""

    start: datetime | None
    end: datetime | None


@dataclass(frozen=True)
class ComplianceViolation:
    kind: ViolationKind
    message: str


@dataclass(frozen=True)
class ComplianceLimits:
    """Upstream date limits.

    Attributes:
        max_span: Longest allowed distance between start and end.
        max_history: Oldest allowed start, measured back from now.
        warn_history: Age after which a non-blocking availability warning is added.
    """

    max_span: timedelta = timedelta(days=7)
    max_history: timedelta = timedelta(days=365)
    warn_history: timedelta = timedelta(days=300)

    @classmethod
    def from_settings(cls, cfg: ComplianceSettings | None = None) -> "ComplianceLimits":
        cfg = cfg or settings.compliance
        return cls(
            max_span=timedelta(days=cfg.max_span_days),
            max_history=timedelta(days=cfg.max_history_days),
            warn_history=timedelta(days=cfg.warn_history_days),
        )


@dataclass(frozen=True)
class ComplianceResult:
    """Outcome of a validation. Valid exactly when no violation was found."""

    violations: tuple[ComplianceViolation, ...] = ()
    warnings: tuple[str, ...] = ()
    span_days: float | None = None
    age_days: float | None = None

    @property
    def valid(self) -> bool:
        return not self.violations

    @property
    def kinds(self) -> tuple[ViolationKind, ...]:
        return tuple(v.kind for v in self.violations)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "violations": [{"kind": v.kind.value, "message": v.message} for v in self.violations],
            "warnings": list(self.warnings),
            "span_days": self.span_days,
            "age_days": self.age_days,
        }


def _days(delta: timedelta) -> float:
    return round(delta.total_seconds() / _SECONDS_PER_DAY, 4)


def _utc_bound(value: object) -> datetime | None:
    # Bounds at the edge of the datetime range cannot be shifted to UTC.
    if not isinstance(value, datetime):
        return None
    try:
        return as_utc(value)
    except (OverflowError, ValueError):
        return None


def validate_date_range(
    date_range: DateRange,
    now: datetime,
    *,
    limits: ComplianceLimits | None = None,
) -> ComplianceResult:
    """Validate a requested window against the upstream limits.

    Rules are evaluated independently; rules that need a missing bound are
    skipped.

    Args:
        date_range: Window to validate.
        now: Reference instant (naive values are taken to be UTC).
        limits: Limits to apply; defaults to the configured ones.

    Returns:
        ComplianceResult listing every violation found, in rule order.
    """
    limits = limits or ComplianceLimits.from_settings()
    now = as_utc(now)
    violations: list[ComplianceViolation] = []
    warnings: list[str] = []

    start = _utc_bound(date_range.start)
    end = _utc_bound(date_range.end)

    if start is None:
        violations.append(
            ComplianceViolation(ViolationKind.MISSING_BOUND, "Start bound is missing or malformed")
        )
    if end is None:
        violations.append(
            ComplianceViolation(ViolationKind.MISSING_BOUND, "End bound is missing or malformed")
        )

    span_days = age_days = None

    if start is not None and end is not None and start >= end:
        violations.append(
            ComplianceViolation(ViolationKind.INVERTED_RANGE, "Start must be before end")
        )

    if end is not None and end > now:
        violations.append(
            ComplianceViolation(ViolationKind.FUTURE_END, "End cannot be in the future")
        )

    if start is not None and end is not None:
        span = end - start
        span_days = _days(span)
        if span > limits.max_span:
            violations.append(
                ComplianceViolation(
                    ViolationKind.RANGE_TOO_LONG,
                    f"Date range cannot exceed {_days(limits.max_span):g} days",
                )
            )
        elif span == limits.max_span:
            warnings.append("Using maximum allowed date range")

    if start is not None:
        age = now - start
        age_days = _days(age)
        if age > limits.max_history:
            violations.append(
                ComplianceViolation(
                    ViolationKind.TOO_HISTORICAL,
                    f"Data older than {_days(limits.max_history):g} days is not available",
                )
            )
        elif age > limits.warn_history:
            warnings.append(
                f"Requesting data older than {_days(limits.warn_history):g} days "
                "- may have limited availability"
            )

    return ComplianceResult(
        violations=tuple(violations),
        warnings=tuple(warnings),
        span_days=span_days,
        age_days=age_days,
    )


def is_compliant(date_range: DateRange, now: datetime, *, limits: ComplianceLimits | None = None) -> bool:
    return validate_date_range(date_range, now, limits=limits).valid


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UPSTREAM_TZ)


def day_range(day: date) -> DateRange:
    """Full upstream-local (IST) calendar day."""
    start = _start_of_day(day)
    return DateRange(start=start, end=start + timedelta(days=1))


def today_range(now: datetime) -> DateRange:
    """From the start of the current upstream-local day up to ``now``."""
    local_now = as_utc(now).astimezone(UPSTREAM_TZ)
    return DateRange(start=_start_of_day(local_now.date()), end=local_now)


def yesterday_range(now: datetime) -> DateRange:
    local_now = as_utc(now).astimezone(UPSTREAM_TZ)
    return day_range(local_now.date() - timedelta(days=1))


def last_days_range(now: datetime, days: int, *, limits: ComplianceLimits | None = None) -> DateRange:
    """Trailing window ending at ``now``, clamped to the maximum span.

    Raises:
        ValueError: If days is not positive.
    """
    if days < 1:
        raise ValueError("days must be >= 1")
    limits = limits or ComplianceLimits.from_settings()
    span = min(timedelta(days=days), limits.max_span)
    end = as_utc(now)
    return DateRange(start=end - span, end=end)
