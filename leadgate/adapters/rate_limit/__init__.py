"""Rate limiting adapters.

This package keeps the call-cadence policy behind a small abstraction so the
access service can start with in-memory state and later persist history to a
file or another shared store without changing the orchestration code.
"""

from leadgate.adapters.rate_limit.base import (
    AbstractRateLimiter,
    DenialReason,
    RateLimitDecision,
    RateLimitPolicy,
    RateLimitStatus,
)
from leadgate.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from leadgate.adapters.rate_limit.store import (
    AbstractStateStore,
    InMemoryStateStore,
    JsonFileStateStore,
)

__all__ = [
    "AbstractRateLimiter",
    "AbstractStateStore",
    "DenialReason",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "RateLimitDecision",
    "RateLimitPolicy",
    "RateLimitStatus",
    "SlidingWindowRateLimiter",
]
