"""In-memory TTL cache used to avoid repeated upstream calls.

Thread-safe, per-entry TTL, least-recently-used eviction when full. Expiry is
lazy: stale entries are dropped when they are looked up (or when a caller
runs ``purge_expired``), never by a background timer.
"""

from __future__ import annotations

import fnmatch
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from leadgate.utils.date_format import as_utc

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached value with freshness and usage metadata."""

    key: str
    value: Any
    created_at: float
    ttl_seconds: float
    last_accessed: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl_seconds

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    expirations: int
    size: int
    max_entries: int
    total_requests: int
    hit_rate: float
    miss_rate: float

    def to_dict(self) -> dict[str, int | float]:
        return asdict(self)


def _percentage(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part / total * 100, 2)


class ResponseCache:
    """Thread-safe, in-memory cache with per-entry TTL and LRU eviction.

    Entries are kept in access order: the first entry of the underlying
    OrderedDict is always the least recently used one, with insertion order
    breaking ties.

    Attributes:
        max_entries: Maximum number of cached items.
        default_ttl_seconds: TTL applied when ``set`` is called without one.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be > 0")

        self.max_entries = max_entries
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ResponseCache(max_entries={self.max_entries}, "
            f"default_ttl_seconds={self.default_ttl_seconds}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: str) -> Any | None:
        """Retrieve a cached value if it exists and is not expired.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found/expired.
        """

        with self._lock:
            now = self._clock()
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "not_found"})
                return None

            if entry.is_expired(now):
                del self._store[key]
                self._expirations += 1
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "expired"})
                return None

            entry.touch(now)
            self._store.move_to_end(key)
            self._hits += 1
            logger.debug(
                "cache.hit",
                extra={"cache_key": key, "access_count": entry.access_count},
            )
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value, evicting the least recently used entry when full.

        Args:
            key: Cache key.
            value: Value to store.
            ttl_seconds: Entry TTL; defaults to ``default_ttl_seconds``.
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be > 0")

        with self._lock:
            now = self._clock()
            self._store.pop(key, None)
            if len(self._store) >= self.max_entries:
                self._evict_lru_locked()

            self._store[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                ttl_seconds=ttl,
                last_accessed=now,
            )
            logger.debug(
                "cache.set",
                extra={"cache_key": key, "size": len(self._store), "ttl_s": ttl},
            )

    def has(self, key: str) -> bool:
        """Check presence without touching usage metadata or counters."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._store[key]
                self._expirations += 1
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store.keys())

    def invalidate(self, pattern: str | None = None, *, regex: bool = False) -> int:
        """Remove all entries whose key matches ``pattern``.

        Args:
            pattern: Glob pattern (``fnmatch`` syntax) or, with ``regex=True``,
                a regular expression searched anywhere in the key. ``None``
                removes everything.
            regex: Interpret ``pattern`` as a regular expression.

        Returns:
            Number of entries removed.

        Raises:
            re.error: If ``regex=True`` and the pattern does not compile.
        """
        with self._lock:
            if pattern is None:
                removed = len(self._store)
                self._store.clear()
            else:
                if regex:
                    compiled = re.compile(pattern)
                    matches = compiled.search
                else:
                    matches = lambda key: fnmatch.fnmatchcase(key, pattern)  # noqa: E731
                doomed = [key for key in self._store if matches(key)]
                for key in doomed:
                    del self._store[key]
                removed = len(doomed)

        logger.info("cache.invalidated", extra={"pattern": pattern, "removed": removed})
        return removed

    def purge_expired(self) -> int:
        """Drop every expired entry now. Returns how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
            for key in expired:
                del self._store[key]
            self._expirations += len(expired)
            return len(expired)

    def clear(self) -> None:
        """Remove all cached entries (counters are kept)."""
        with self._lock:
            self._store.clear()

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0

    def stats(self) -> CacheStats:
        """Return cache metrics without exposing values."""

        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                size=len(self._store),
                max_entries=self.max_entries,
                total_requests=total,
                hit_rate=_percentage(self._hits, total),
                miss_rate=_percentage(self._misses, total),
            )

    def _evict_lru_locked(self) -> None:
        key, _ = self._store.popitem(last=False)
        self._evictions += 1
        logger.debug("cache.evicted", extra={"cache_key": key, "reason": "capacity"})


def _normalize_value(value: Any) -> str:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return str(value)


def build_cache_key(prefix: str, params: Mapping[str, Any]) -> str:
    """Build an order-independent cache key from request parameters.

    Args:
        prefix: Namespace for the key (e.g. ``"leads"``).
        params: Logical request parameters; ``None`` values are ignored.

    Returns:
        Key of the form ``prefix:k1=v1|k2=v2`` with parameters sorted by name.
    """

    parts = [
        f"{name}={_normalize_value(value)}"
        for name, value in sorted(params.items())
        if value is not None
    ]
    return f"{prefix}:{'|'.join(parts)}"
