"""Sliding-window rate limiter with an explicit blocking state.

Notes:
- Windows slide continuously ([now - W, now]); they are not reset on fixed
  boundaries.
- Records older than one hour are pruned lazily inside every public call,
  so no cleanup thread is needed.
- Thread-safe: one lock serializes checks and appends.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable

from leadgate.adapters.rate_limit.base import (
    AbstractRateLimiter,
    DenialReason,
    RateLimitDecision,
    RateLimitPolicy,
    RateLimitStatus,
)
from leadgate.adapters.rate_limit.store import AbstractStateStore, InMemoryStateStore

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60.0
HOUR_SECONDS = 3600.0


class SlidingWindowRateLimiter(AbstractRateLimiter):
    """Tracks upstream calls and decides admission.

    States are ``ALLOWED`` (default) and ``BLOCKED``. Crossing the hourly
    ceiling blocks for ``block_duration_seconds``; the first check after the
    block has expired clears it along with the history that triggered it.
    Independently of blocking, each check enforces the per-minute ceiling and
    the minimum interval since the last recorded call.
    """

    def __init__(
        self,
        policy: RateLimitPolicy | None = None,
        *,
        clock: Callable[[], float] = time.time,
        store: AbstractStateStore | None = None,
    ) -> None:
        """Initialize the limiter, restoring state from ``store`` if any.

        Args:
            policy: Limits to enforce (defaults to the upstream's published ones).
            clock: Time source returning UNIX time in seconds.
            store: Persistence backend; in-memory when omitted.
        """
        self.policy = policy or RateLimitPolicy()
        self._clock = clock
        self._store = store or InMemoryStateStore()
        self._lock = threading.RLock()

        self._calls: deque[float] = deque()
        self._blocked_until: float | None = None
        self._last_call_time: float | None = None
        self._successful_calls = 0
        self._failed_calls = 0
        self._restore(self._store.load())

    # -- persistence -------------------------------------------------------

    def _restore(self, data: dict[str, Any] | None) -> None:
        if not data:
            return
        self._calls = deque(sorted(float(ts) for ts in data.get("calls", [])))
        blocked_until = data.get("blocked_until")
        self._blocked_until = float(blocked_until) if blocked_until is not None else None
        last_call = data.get("last_call_time")
        self._last_call_time = float(last_call) if last_call is not None else None
        self._successful_calls = int(data.get("successful_calls", 0))
        self._failed_calls = int(data.get("failed_calls", 0))

    def _snapshot(self) -> dict[str, Any]:
        return {
            "calls": list(self._calls),
            "blocked_until": self._blocked_until,
            "last_call_time": self._last_call_time,
            "successful_calls": self._successful_calls,
            "failed_calls": self._failed_calls,
        }

    def _persist_locked(self) -> None:
        self._store.save(self._snapshot())

    # -- internals ---------------------------------------------------------

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    def _prune_locked(self, now: float) -> bool:
        changed = False
        cutoff = now - HOUR_SECONDS
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()
            changed = True
        return changed

    def _release_expired_block_locked(self, now: float) -> bool:
        if self._blocked_until is None or now < self._blocked_until:
            return False
        logger.info(
            "rate_limit.block_expired",
            extra={"blocked_until": self._blocked_until, "discarded_calls": len(self._calls)},
        )
        self._blocked_until = None
        self._calls.clear()
        return True

    def _count_since_locked(self, since: float) -> int:
        return sum(1 for ts in self._calls if ts > since)

    def _block_locked(self, now: float, duration: float) -> None:
        until = now + duration
        if self._blocked_until is None or until > self._blocked_until:
            self._blocked_until = until
        logger.warning(
            "rate_limit.blocked",
            extra={"blocked_until": self._blocked_until, "block_s": duration},
        )

    def _decide_locked(self, now: float) -> tuple[RateLimitDecision, bool]:
        """Evaluate admission; returns the decision and whether state changed."""
        changed = self._release_expired_block_locked(now)

        if self._blocked_until is not None:
            remaining = self._blocked_until - now
            return (
                RateLimitDecision(
                    allowed=False,
                    reason=DenialReason.BLOCKED,
                    retry_after_seconds=remaining,
                    message=f"Upstream calls are blocked for {remaining:.0f} more seconds",
                ),
                changed,
            )

        changed = self._prune_locked(now) or changed
        policy = self.policy

        calls_last_hour = self._count_since_locked(now - HOUR_SECONDS)
        if calls_last_hour >= policy.max_per_hour:
            self._block_locked(now, policy.block_duration_seconds)
            return (
                RateLimitDecision(
                    allowed=False,
                    reason=DenialReason.HOURLY_LIMIT,
                    retry_after_seconds=policy.block_duration_seconds,
                    message=(
                        f"Hourly limit of {policy.max_per_hour} calls exceeded; "
                        f"blocked for {policy.block_duration_seconds:.0f} seconds"
                    ),
                ),
                True,
            )

        minute_start = now - MINUTE_SECONDS
        recent = [ts for ts in self._calls if ts > minute_start]
        if len(recent) >= policy.max_per_minute:
            wait = max(recent[0] + MINUTE_SECONDS - now, 0.0)
            return (
                RateLimitDecision(
                    allowed=False,
                    reason=DenialReason.MINUTE_LIMIT,
                    retry_after_seconds=wait,
                    message=f"Minute limit of {policy.max_per_minute} calls exceeded; wait {wait:.0f} seconds",
                ),
                changed,
            )

        if self._last_call_time is not None:
            elapsed = now - self._last_call_time
            if elapsed < policy.min_interval_seconds:
                wait = policy.min_interval_seconds - elapsed
                return (
                    RateLimitDecision(
                        allowed=False,
                        reason=DenialReason.MIN_INTERVAL,
                        retry_after_seconds=wait,
                        message=(
                            f"Minimum interval of {policy.min_interval_seconds:.0f} seconds "
                            f"between calls; wait {wait:.0f} seconds"
                        ),
                    ),
                    changed,
                )

        return (
            RateLimitDecision(
                allowed=True,
                reason=DenialReason.OK,
                retry_after_seconds=0.0,
                message="Upstream call allowed",
            ),
            changed,
        )

    # -- public API --------------------------------------------------------

    def can_call(self, now: float | None = None) -> RateLimitDecision:
        """Decide whether an upstream call may be made.

        Args:
            now: Reference time in UNIX seconds; defaults to the clock.

        Returns:
            RateLimitDecision with the denial reason and wait when denied.
        """
        with self._lock:
            now = self._now(now)
            decision, changed = self._decide_locked(now)
            if changed:
                self._persist_locked()

        if decision.allowed:
            logger.debug("rate_limit.allowed")
        else:
            logger.info(
                "rate_limit.denied",
                extra={
                    "reason": decision.reason.value,
                    "retry_after_s": round(decision.retry_after_seconds, 3),
                },
            )
        return decision

    def record_call(self, now: float | None = None, *, success: bool = True) -> None:
        """Append a call that reached the upstream.

        Args:
            now: Time of the call in UNIX seconds; defaults to the clock.
            success: Whether the call produced a usable response.
        """
        with self._lock:
            now = self._now(now)
            self._prune_locked(now)
            self._calls.append(now)
            self._last_call_time = now
            if success:
                self._successful_calls += 1
            else:
                self._failed_calls += 1
            self._persist_locked()
            calls_last_hour = len(self._calls)

        logger.info(
            "rate_limit.recorded",
            extra={
                "success": success,
                "calls_last_hour": calls_last_hour,
                "hour_limit": self.policy.max_per_hour,
            },
        )

    def block(self, now: float | None = None, duration_seconds: float | None = None) -> None:
        """Block calls, e.g. when the upstream reports the key as suspended."""
        duration = self.policy.block_duration_seconds if duration_seconds is None else duration_seconds
        if duration <= 0:
            raise ValueError("duration_seconds must be > 0")
        with self._lock:
            self._block_locked(self._now(now), duration)
            self._persist_locked()

    def status(self, now: float | None = None) -> RateLimitStatus:
        with self._lock:
            now = self._now(now)
            decision, changed = self._decide_locked(now)
            if changed:
                self._persist_locked()
            return RateLimitStatus(
                allowed=decision.allowed,
                reason=decision.reason,
                retry_after_seconds=decision.retry_after_seconds,
                message=decision.message,
                calls_last_minute=self._count_since_locked(now - MINUTE_SECONDS),
                calls_last_hour=self._count_since_locked(now - HOUR_SECONDS),
                minute_limit=self.policy.max_per_minute,
                hour_limit=self.policy.max_per_hour,
                min_interval_seconds=self.policy.min_interval_seconds,
                is_blocked=self._blocked_until is not None,
                blocked_until=self._blocked_until,
                last_call_time=self._last_call_time,
                successful_calls=self._successful_calls,
                failed_calls=self._failed_calls,
            )

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()
            self._blocked_until = None
            self._last_call_time = None
            self._successful_calls = 0
            self._failed_calls = 0
            self._persist_locked()
        logger.info("rate_limit.reset")
