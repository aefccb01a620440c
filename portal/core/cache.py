"""In-process TTL cache with tag and pattern invalidation.

The cache is a plain object owned by whoever builds it (the API lifespan, the
maintenance CLI, a test fixture) and injected into its consumers:

- entries expire after a TTL and are purged lazily or by `cleanup()`
- every entry carries a set of tags, `invalidate_by_tags` drops them in bulk
- at `max_size` the least recently used entry is evicted
- hit/miss/set/invalidation counters feed `get_statistics()`

It runs on a single event loop and holds no locks.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from portal.core.error_handler import resilient_task, safe_background_task
from portal.core.metrics import CACHE_ENTRIES, observe_cache

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class CacheConfig:
    """Sizing and timing knobs of a `TaggedCache`."""

    max_size: int = 1000
    default_ttl: timedelta = timedelta(minutes=5)
    cleanup_interval: timedelta = timedelta(seconds=60)

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {self.max_size}")
        if self.default_ttl < timedelta(0):
            raise ValueError("default_ttl must not be negative")
        if self.cleanup_interval <= timedelta(0):
            raise ValueError("cleanup_interval must be positive")

    @classmethod
    def from_settings(cls, settings: Any) -> "CacheConfig":
        return cls(
            max_size=settings.cache_max_size,
            default_ttl=timedelta(seconds=settings.cache_default_ttl_seconds),
            cleanup_interval=timedelta(seconds=settings.cache_cleanup_interval_seconds),
        )

    def with_changes(self, **changes: Any) -> "CacheConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_size": self.max_size,
            "default_ttl_seconds": self.default_ttl.total_seconds(),
            "cleanup_interval_seconds": self.cleanup_interval.total_seconds(),
        }


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float
    tags: frozenset[str]
    created_at: float
    last_accessed: float
    access_count: int = 0
    size: int = 1

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheStatistics:
    size: int
    max_size: int
    hits: int
    misses: int
    sets: int
    invalidations: int
    evictions: int
    hit_rate: float
    memory_usage: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _Counters:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    evictions: int = 0


def _approximate_size(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return 1


class TaggedCache:
    """TTL + tag cache with LRU eviction."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._counters = _Counters()
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def config(self) -> CacheConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        now = self._clock()
        if entry is None:
            self._counters.misses += 1
            observe_cache("get", "miss")
            return _MISSING
        if entry.is_expired(now):
            self._remove(key)
            self._counters.misses += 1
            observe_cache("get", "expired")
            return _MISSING

        entry.last_accessed = now
        entry.access_count += 1
        self._entries.move_to_end(key)
        self._counters.hits += 1
        observe_cache("get", "hit")
        return entry.value

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: Optional[timedelta] = None,
        tags: Iterable[str] = (),
    ) -> None:
        now = self._clock()
        effective_ttl = self._config.default_ttl if ttl is None else ttl

        if key in self._entries:
            del self._entries[key]
        else:
            self._make_room()

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=now + effective_ttl.total_seconds(),
            tags=frozenset(tags),
            created_at=now,
            last_accessed=now,
            size=_approximate_size(value),
        )
        self._counters.sets += 1
        observe_cache("set", "stored")
        CACHE_ENTRIES.set(len(self._entries))
        logger.debug(
            "Cache set",
            extra={"cache_key": key, "ttl_seconds": effective_ttl.total_seconds()},
        )

    def delete(self, key: str) -> bool:
        removed = self._remove(key)
        if removed:
            observe_cache("delete", "removed")
        return removed

    async def wrap(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        *,
        ttl: Optional[timedelta] = None,
        tags: Iterable[str] = (),
    ) -> T:
        """Return the cached value or await `producer()` once and store its result.

        A cached `None` counts as a hit. Exceptions raised by the producer
        propagate and nothing is stored.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        value = await producer()
        self.set(key, value, ttl=ttl, tags=tags)
        return value

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_by_tags(self, tags: Iterable[str] | str) -> int:
        wanted = {tags} if isinstance(tags, str) else set(tags)
        if not wanted:
            return 0
        doomed = [key for key, entry in self._entries.items() if entry.tags & wanted]
        return self._invalidate(doomed, "tags", sorted(wanted))

    def invalidate_by_pattern(self, pattern: str) -> int:
        """Drop keys matching a glob pattern (`*` and `?` wildcards)."""
        doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        return self._invalidate(doomed, "pattern", pattern)

    def _invalidate(self, keys: list[str], kind: str, selector: Any) -> int:
        for key in keys:
            self._remove(key)
        count = len(keys)
        self._counters.invalidations += count
        observe_cache(f"invalidate_{kind}", "removed" if count else "noop")
        if count:
            logger.debug(
                "Cache invalidated by %s",
                kind,
                extra={"selector": selector, "invalidated": count},
            )
        return count

    def cleanup(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        if expired:
            observe_cache("cleanup", "removed")
            logger.debug(
                "Cache cleanup completed",
                extra={"cleaned": len(expired), "remaining": len(self._entries)},
            )
        return len(expired)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        CACHE_ENTRIES.set(0)
        logger.info("Cache cleared", extra={"cleared_entries": size})
        return size

    # ------------------------------------------------------------------
    # Introspection and tuning
    # ------------------------------------------------------------------

    def get_statistics(self) -> CacheStatistics:
        counters = self._counters
        total = counters.hits + counters.misses
        hit_rate = round(counters.hits / total * 100, 2) if total else 0.0
        return CacheStatistics(
            size=len(self._entries),
            max_size=self._config.max_size,
            hits=counters.hits,
            misses=counters.misses,
            sets=counters.sets,
            invalidations=counters.invalidations,
            evictions=counters.evictions,
            hit_rate=hit_rate,
            memory_usage=sum(entry.size for entry in self._entries.values()),
        )

    def get_debug_info(self) -> dict[str, Any]:
        now = self._clock()
        entries = [
            {
                "key": entry.key,
                "tags": sorted(entry.tags),
                "created_at": entry.created_at,
                "expires_at": entry.expires_at,
                "last_accessed": entry.last_accessed,
                "access_count": entry.access_count,
                "size": entry.size,
                "is_expired": entry.is_expired(now),
            }
            for entry in reversed(self._entries.values())
        ]
        return {
            "config": self._config.to_dict(),
            "statistics": self.get_statistics().to_dict(),
            "entries": entries,
        }

    def reset_statistics(self) -> None:
        self._counters = _Counters()

    def reconfigure(self, config: CacheConfig) -> None:
        previous = self._config
        self._config = config
        while len(self._entries) > config.max_size:
            self._evict_lru()
        if previous.cleanup_interval != config.cleanup_interval and self._cleanup_task:
            self.stop_cleanup_task()
            self.start_cleanup_task()
        logger.info(
            "Cache reconfigured",
            extra={"before": previous.to_dict(), "after": config.to_dict()},
        )

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def start_cleanup_task(self) -> asyncio.Task:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        @resilient_task(task_name="cache_sweeper", retry_delay=1.0)
        async def sweep() -> None:
            while True:
                await asyncio.sleep(self._config.cleanup_interval.total_seconds())
                self.cleanup()

        self._cleanup_task = safe_background_task("cache_sweeper", sweep())
        return self._cleanup_task

    def stop_cleanup_task(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remove(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            CACHE_ENTRIES.set(len(self._entries))
        return removed

    def _make_room(self) -> None:
        if len(self._entries) < self._config.max_size:
            return
        self.cleanup()
        while len(self._entries) >= self._config.max_size:
            self._evict_lru()

    def _evict_lru(self) -> None:
        key, _ = self._entries.popitem(last=False)
        self._counters.evictions += 1
        observe_cache("evict", "lru")
        CACHE_ENTRIES.set(len(self._entries))
        logger.debug("Cache LRU eviction", extra={"cache_key": key})


class CacheKeys:
    """Standard cache key patterns."""

    @staticmethod
    def news_details(news_id: int) -> str:
        return f"news:{news_id}:details"

    @staticmethod
    def news_list(page: int, limit: int, category: str | None = None) -> str:
        return f"news:list:{category or 'all'}:{page}:{limit}"

    @staticmethod
    def global_stats(days: int) -> str:
        return f"news:stats:global:{days}"

    @staticmethod
    def homepage_stats() -> str:
        return "stats:homepage"

    @staticmethod
    def top_articles_monthly() -> str:
        return "expensive:top_articles_monthly"

    @staticmethod
    def benchmark(name: str) -> str:
        return f"benchmark:{name}"


class CacheTags:
    NEWS = "news"
    POPULAR = "popular"
    ANALYTICS = "analytics"
    GLOBAL = "global"
    EXPENSIVE = "expensive"
    BENCHMARK = "benchmark"
    STATS = "stats"

    @staticmethod
    def article(news_id: int) -> str:
        return f"news:{news_id}"


class CacheTTL:
    """Standard cache TTL values."""

    SHORT = timedelta(minutes=5)
    GLOBAL_STATS = timedelta(minutes=15)
    MEDIUM = timedelta(minutes=30)
    LONG = timedelta(hours=1)


__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKeys",
    "CacheStatistics",
    "CacheTTL",
    "CacheTags",
    "TaggedCache",
]
