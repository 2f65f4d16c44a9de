"""Helpers for the upstream's date-string dialect.

The lead API expects timestamps in India Standard Time rendered as
``DD-MM-YYYYHH:MM:SS`` (no separator between date and time) or, for
day-granular queries, ``DD-MON-YYYY``.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

UPSTREAM_TZ = timezone(timedelta(hours=5, minutes=30), name="IST")

_MONTHS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")

_DAY_RE = re.compile(r"^(\d{2})-([A-Za-z]{3})-(\d{4})$")
_DAY_TIME_RE = re.compile(r"^(\d{2})-([A-Za-z]{3})-(\d{4}) (\d{2}):(\d{2}):(\d{2})$")
_TIMESTAMP_RE = re.compile(r"^(\d{2})-(\d{2})-(\d{4}) ?(\d{2}):(\d{2}):(\d{2})$")


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_for_upstream(value: datetime, style: str = "timestamp") -> str:
    """Render a datetime in the upstream dialect.

    Args:
        value: Instant to render; naive values are taken to be UTC.
        style: ``"timestamp"`` for ``DD-MM-YYYYHH:MM:SS`` or ``"date"`` for
            ``DD-MON-YYYY``.

    Returns:
        The formatted string in upstream-local (IST) time.

    Raises:
        ValueError: If style is unknown.
    """
    local = as_utc(value).astimezone(UPSTREAM_TZ)
    if style == "date":
        return f"{local.day:02d}-{_MONTHS[local.month - 1]}-{local.year}"
    if style == "timestamp":
        return local.strftime("%d-%m-%Y%H:%M:%S")
    raise ValueError(f"Unknown date style: {style!r}")


def _month_index(abbrev: str) -> int:
    try:
        return _MONTHS.index(abbrev.upper()) + 1
    except ValueError:
        raise ValueError(f"Unknown month abbreviation: {abbrev!r}") from None


def parse_upstream_date(value: str) -> datetime:
    """Parse an upstream or ISO-8601 date string into an aware datetime.

    Upstream formats carry no offset and are interpreted as IST; ISO strings
    without an offset are interpreted as UTC.

    Raises:
        ValueError: If the string matches none of the supported formats.
    """
    text = value.strip()

    match = _DAY_RE.match(text)
    if match:
        day, month, year = match.groups()
        return datetime(int(year), _month_index(month), int(day), tzinfo=UPSTREAM_TZ)

    match = _DAY_TIME_RE.match(text)
    if match:
        day, month, year, hour, minute, second = match.groups()
        return datetime(
            int(year), _month_index(month), int(day),
            int(hour), int(minute), int(second),
            tzinfo=UPSTREAM_TZ,
        )

    match = _TIMESTAMP_RE.match(text)
    if match:
        day, month, year, hour, minute, second = (int(part) for part in match.groups())
        return datetime(year, month, day, hour, minute, second, tzinfo=UPSTREAM_TZ)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Unrecognised date format: {value!r}") from None
    return as_utc(parsed)


def coerce_bound(value: datetime | str | None) -> datetime | None:
    """Lenient conversion used at the edges: unparseable input becomes None."""
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return parse_upstream_date(value)
    except (OverflowError, ValueError):
        return None
