"""Before/after micro-benchmarks used by the optimization report."""

from __future__ import annotations

import gc
import logging
import time
import tracemalloc
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import delete, func, select

from portal.core.cache import CacheKeys, CacheTags, TaggedCache
from portal.core.db import Database
from portal.core.time_utils import utc_now, utc_today
from portal.domain.analytics import NewsAnalyticsService, TrackingContext
from portal.domain.analytics_models import DailyNewsStats, ViewEvent
from portal.domain.models import News

logger = logging.getLogger(__name__)

BENCHMARK_USER_AGENT = "PortalBenchmark/1.0"


@dataclass(frozen=True)
class BenchmarkTiming:
    name: str
    elapsed_ms: float
    error: Optional[str] = None


@dataclass(frozen=True)
class BenchmarkGroup:
    tests: list[BenchmarkTiming]
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def average_ms(self) -> float:
        if not self.tests:
            return 0.0
        return round(sum(test.elapsed_ms for test in self.tests) / len(self.tests), 3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tests": [asdict(test) for test in self.tests],
            "average_ms": self.average_ms,
            **self.extra,
        }


@dataclass(frozen=True)
class MemorySnapshot:
    traced_current: int
    traced_peak: int
    gc_objects: int
    max_rss_kb: Optional[int] = None

    @property
    def usage(self) -> float:
        """Current traced allocation as a percent of the traced peak."""
        if not self.traced_peak:
            return 0.0
        return round(self.traced_current / self.traced_peak * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "usage": self.usage}


@dataclass(frozen=True)
class PerformanceSnapshot:
    database: BenchmarkGroup
    cache: BenchmarkGroup
    analytics: BenchmarkGroup
    memory: MemorySnapshot
    startup: dict[str, Any]

    @property
    def cache_hit_rate(self) -> float:
        return float(self.cache.extra.get("statistics", {}).get("hit_rate", 0.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "database": self.database.to_dict(),
            "cache": self.cache.to_dict(),
            "analytics": self.analytics.to_dict(),
            "memory": self.memory.to_dict(),
            "startup": self.startup,
        }


def memory_snapshot() -> MemorySnapshot:
    current, peak = tracemalloc.get_traced_memory() if tracemalloc.is_tracing() else (0, 0)
    try:
        import resource

        max_rss = int(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss)
    except ImportError:  # pragma: no cover - Windows has no resource module
        max_rss = None
    return MemorySnapshot(
        traced_current=current,
        traced_peak=peak,
        gc_objects=len(gc.get_objects()),
        max_rss_kb=max_rss,
    )


async def _timed(name: str, action: Callable[[], Awaitable[Any]]) -> BenchmarkTiming:
    started = time.perf_counter()
    try:
        await action()
    except Exception as exc:
        logger.warning("Benchmark %s failed: %s", name, exc)
        return BenchmarkTiming(name, round((time.perf_counter() - started) * 1000, 3), str(exc))
    return BenchmarkTiming(name, round((time.perf_counter() - started) * 1000, 3))


class Benchmarks:
    """Runs the benchmark basket against live collaborators.

    Every probe that writes (insert, track_view) removes what it created.
    """

    def __init__(
        self,
        database: Database,
        cache: TaggedCache,
        analytics: Optional[NewsAnalyticsService] = None,
    ):
        self.database = database
        self.cache = cache
        self.analytics = analytics

    async def database_group(self) -> BenchmarkGroup:
        async def simple_news_query() -> None:
            async with self.database.session() as session:
                await session.execute(select(News).where(News.status == "published").limit(10))

        async def complex_aggregation() -> None:
            since = utc_today() - timedelta(days=7)
            async with self.database.session() as session:
                await session.execute(
                    select(func.sum(DailyNewsStats.total_views)).where(DailyNewsStats.date >= since)
                )

        async def insert_performance() -> None:
            async with self.database.session() as session:
                news = News(title="Benchmark probe", slug=f"benchmark-probe-{time.time_ns()}")
                session.add(news)
                await session.flush()
                event = ViewEvent(
                    news_id=news.id,
                    session_id="benchmark-test",
                    ip="127.0.0.1",
                    user_agent=BENCHMARK_USER_AGENT,
                    timestamp=utc_now(),
                )
                session.add(event)
                await session.flush()
                await session.execute(delete(ViewEvent).where(ViewEvent.id == event.id))
                await session.execute(delete(News).where(News.id == news.id))
                await session.commit()

        return BenchmarkGroup(
            tests=[
                await _timed("simple_news_query", simple_news_query),
                await _timed("complex_aggregation", complex_aggregation),
                await _timed("insert_performance", insert_performance),
            ]
        )

    async def cache_group(self) -> BenchmarkGroup:
        async def basic_set_get() -> None:
            self.cache.set(CacheKeys.benchmark("test1"), {"data": "test"})
            self.cache.get(CacheKeys.benchmark("test1"))

        async def wrap_function() -> None:
            async def produce() -> dict[str, Any]:
                return {"data": "wrapped", "timestamp": utc_now().isoformat()}

            await self.cache.wrap(CacheKeys.benchmark("test2"), produce)

        async def invalidation() -> None:
            self.cache.set(
                CacheKeys.benchmark("test3"), {"data": "test"}, tags=[CacheTags.BENCHMARK]
            )
            self.cache.invalidate_by_tags([CacheTags.BENCHMARK])

        tests = [
            await _timed("basic_set_get", basic_set_get),
            await _timed("wrap_function", wrap_function),
            await _timed("invalidation", invalidation),
        ]
        return BenchmarkGroup(
            tests=tests, extra={"statistics": self.cache.get_statistics().to_dict()}
        )

    async def analytics_group(self) -> BenchmarkGroup:
        if self.analytics is None:
            return BenchmarkGroup(tests=[], extra={"skipped": True})
        analytics = self.analytics

        async def track_view() -> None:
            async with self.database.session() as session:
                news = News(
                    title="Benchmark Test",
                    slug=f"benchmark-test-{time.time_ns()}",
                    status="published",
                )
                session.add(news)
                await session.commit()
                news_id = news.id
            try:
                await analytics.track_view(
                    news_id,
                    TrackingContext(
                        session_id="benchmark-session",
                        ip="127.0.0.1",
                        user_agent=BENCHMARK_USER_AGENT,
                    ),
                )
                await analytics.wait_for_pending()
            finally:
                async with self.database.session() as session:
                    await session.execute(delete(ViewEvent).where(ViewEvent.news_id == news_id))
                    await session.execute(
                        delete(DailyNewsStats).where(DailyNewsStats.news_id == news_id)
                    )
                    await session.execute(delete(News).where(News.id == news_id))
                    await session.commit()

        async def global_stats() -> None:
            await analytics.get_global_stats(7)

        return BenchmarkGroup(
            tests=[
                await _timed("track_view", track_view),
                await _timed("global_stats", global_stats),
            ]
        )

    async def startup(self) -> dict[str, Any]:
        started = time.perf_counter()
        async with self.database.engine.connect() as conn:
            await conn.execute(select(1))
        self.cache.get_statistics()
        return {"connection_ms": round((time.perf_counter() - started) * 1000, 3)}

    async def snapshot(self) -> PerformanceSnapshot:
        return PerformanceSnapshot(
            database=await self.database_group(),
            cache=await self.cache_group(),
            analytics=await self.analytics_group(),
            memory=memory_snapshot(),
            startup=await self.startup(),
        )


__all__ = [
    "BenchmarkGroup",
    "BenchmarkTiming",
    "Benchmarks",
    "MemorySnapshot",
    "PerformanceSnapshot",
    "memory_snapshot",
]
