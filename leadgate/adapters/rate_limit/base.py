"""Rate limiter interfaces.

The access service depends on this abstraction (not the concrete
implementation) so call-history storage can change without touching the
orchestration logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class DenialReason(str, Enum):
    OK = "OK"
    BLOCKED = "BLOCKED"
    HOURLY_LIMIT = "HOURLY_LIMIT"
    MINUTE_LIMIT = "MINUTE_LIMIT"
    MIN_INTERVAL = "MIN_INTERVAL"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Call-cadence limits mirrored from the upstream.

    Attributes:
        min_interval_seconds: Minimum time between two calls.
        max_per_minute: Ceiling for the trailing 60 seconds.
        max_per_hour: Ceiling for the trailing hour; crossing it blocks.
        block_duration_seconds: Length of the block applied on the hourly ceiling.
    """

    min_interval_seconds: float = 300.0
    max_per_minute: int = 5
    max_per_hour: int = 20
    block_duration_seconds: float = 900.0

    def __post_init__(self) -> None:
        if self.min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        if self.max_per_minute < 1:
            raise ValueError("max_per_minute must be >= 1")
        if self.max_per_hour < 1:
            raise ValueError("max_per_hour must be >= 1")
        if self.block_duration_seconds <= 0:
            raise ValueError("block_duration_seconds must be > 0")


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of an admission check.

    Attributes:
        allowed: Whether a call may be made now.
        reason: Why the call was denied (``OK`` when allowed).
        retry_after_seconds: Suggested wait before asking again (0 when allowed).
        message: Human-readable explanation.
    """

    allowed: bool
    reason: DenialReason
    retry_after_seconds: float
    message: str

    @property
    def retry_after_ms(self) -> int:
        return int(round(self.retry_after_seconds * 1000))


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of the limiter for operators and health checks."""

    allowed: bool
    reason: DenialReason
    retry_after_seconds: float
    message: str
    calls_last_minute: int
    calls_last_hour: int
    minute_limit: int
    hour_limit: int
    min_interval_seconds: float
    is_blocked: bool
    blocked_until: float | None
    last_call_time: float | None
    successful_calls: int
    failed_calls: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reason"] = self.reason.value
        return data


class AbstractRateLimiter(ABC):
    """Interface for outbound call limiters."""

    @abstractmethod
    def can_call(self, now: float | None = None) -> RateLimitDecision:
        """Decide whether an upstream call may be made at ``now``."""
        raise NotImplementedError

    @abstractmethod
    def record_call(self, now: float | None = None, *, success: bool = True) -> None:
        """Count a call that reached the upstream."""
        raise NotImplementedError

    @abstractmethod
    def block(self, now: float | None = None, duration_seconds: float | None = None) -> None:
        """Enter the blocked state explicitly."""
        raise NotImplementedError

    @abstractmethod
    def status(self, now: float | None = None) -> RateLimitStatus:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        """Forget all call history and any active block."""
        raise NotImplementedError
