"""In-memory cache with per-entry TTL and least-recently-used eviction.

Enrichment blocks use this to avoid repeating identical external calls:
country detection rarely changes, social/professional profiles are stable
for days, LLM inferences for a week.
"""

import functools
import hashlib
import inspect
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL = 3600.0  # seconds

HOUR = 3600.0
DAY = 24 * HOUR


@dataclass
class CacheEntry(Generic[T]):
    """Stored value plus expiry/recency bookkeeping (times from the cache clock)."""
    value: T
    expires_at: float
    created_at: float
    last_accessed: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        # Valid up to and including expires_at
        return now > self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Read-only snapshot of cache counters since creation or the last ``clear``."""
    hits: int
    misses: int
    evictions: int
    size: int
    max_size: int
    total_sets: int

    @property
    def hit_rate(self) -> float:
        """Hit percentage (0-100)."""
        total = self.hits + self.misses
        return (self.hits / total) * 100 if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "total_sets": self.total_sets,
            "hit_rate": round(self.hit_rate, 2),
        }


class Cache(Generic[T]):
    """Key -> value store with TTL expiry and LRU eviction.

    Expired entries are purged lazily when touched by ``get``/``has`` (or in
    bulk via ``cleanup``). Eviction only happens on ``set`` of a new key when
    the cache is full, and removes the single least-recently-accessed entry.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl}")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._total_sets = 0

    def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        """Return the value if present and unexpired, refreshing its recency."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                return default

            self._hits += 1
            entry.last_accessed = now
            entry.access_count += 1
            # Move to the most-recent end
            self._entries[key] = self._entries.pop(key)
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Store ``value`` for ``ttl`` seconds (default TTL when omitted)."""
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_lru()
            elif key in self._entries:
                # Overwrite counts as an access for recency purposes
                del self._entries[key]

            self._entries[key] = CacheEntry(
                value=value,
                expires_at=now + (ttl if ttl is not None else self.default_ttl),
                created_at=now,
                last_accessed=now,
            )
            self._total_sets += 1

    def has(self, key: str) -> bool:
        """Expiry-aware membership test that does not refresh recency."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop all entries and reset every counter."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._total_sets = 0

    def keys(self) -> List[str]:
        """Keys of unexpired entries, least recently used first."""
        with self._lock:
            now = self._clock()
            return [k for k, e in self._entries.items() if not e.is_expired(now)]

    def cleanup(self) -> int:
        """Purge all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            if expired:
                logger.debug(f"Cache '{self.name}' purged {len(expired)} expired entries")
            return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                max_size=self.max_size,
                total_sets=self._total_sets,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def _evict_lru(self) -> None:
        # Entries are kept in recency order, oldest first
        if not self._entries:
            return
        lru_key = next(iter(self._entries))
        del self._entries[lru_key]
        self._evictions += 1
        logger.debug(f"Cache '{self.name}' evicted LRU entry: {lru_key}")


class Caches:
    """Factories for pre-configured cache instances."""

    @staticmethod
    def country() -> Cache:
        # Locale detection rarely changes
        return Cache(max_size=500, default_ttl=DAY, name="country")

    @staticmethod
    def social() -> Cache:
        return Cache(max_size=1000, default_ttl=7 * DAY, name="social")

    @staticmethod
    def professional() -> Cache:
        return Cache(max_size=1000, default_ttl=30 * DAY, name="professional")

    @staticmethod
    def llm() -> Cache:
        return Cache(max_size=2000, default_ttl=7 * DAY, name="llm")

    @staticmethod
    def short_term() -> Cache:
        return Cache(max_size=100, default_ttl=5 * 60.0, name="short_term")


def generate_cache_key(prefix: str, obj: Dict[str, Any]) -> str:
    """Order-independent fingerprint of a request.

    ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` map to the same key.
    """
    canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


def memoize(
    fn: Callable[..., Any],
    cache: Optional[Cache] = None,
    key_fn: Optional[Callable[..., str]] = None,
) -> Callable[..., Any]:
    """Wrap ``fn`` so results are served from ``cache`` on a hit.

    Works for both plain and ``async`` callables. ``None`` results are not
    cached, since a ``None`` read is indistinguishable from a miss.
    """
    store = cache if cache is not None else Cache()

    def _key(*args, **kwargs) -> str:
        if key_fn is not None:
            return key_fn(*args, **kwargs)
        return generate_cache_key(
            f"memoize:{getattr(fn, '__qualname__', 'fn')}",
            {"args": list(args), "kwargs": kwargs},
        )

    if inspect.iscoroutinefunction(fn):
        @functools.wraps(fn)
        async def async_wrapper(*args, **kwargs):
            key = _key(*args, **kwargs)
            cached = store.get(key)
            if cached is not None:
                return cached
            result = await fn(*args, **kwargs)
            if result is not None:
                store.set(key, result)
            return result

        async_wrapper.cache = store
        return async_wrapper

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        key = _key(*args, **kwargs)
        cached = store.get(key)
        if cached is not None:
            return cached
        result = fn(*args, **kwargs)
        if result is not None:
            store.set(key, result)
        return result

    wrapper.cache = store
    return wrapper
