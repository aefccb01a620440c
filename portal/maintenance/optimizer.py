"""
Performance optimization routine.

`PerformanceOptimizer.optimize_all()` walks a fixed checklist:

    measure_baseline -> optimize_database -> optimize_cache -> optimize_analytics
    -> optimize_memory -> optimize_queries -> measure_final -> report

Each stage is a list of named steps run by `StepRunner`. A failing step is
recorded in the report and the run carries on; the run always produces a
report and always disposes the database handle it was given.
"""

from __future__ import annotations

import asyncio
import gc
import logging
import tracemalloc
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from portal.core.cache import (
    CacheConfig,
    CacheKeys,
    CacheStatistics,
    CacheTags,
    CacheTTL,
    TaggedCache,
)
from portal.core.db import Database
from portal.core.metrics import MAINTENANCE_LAST_RUN_TIMESTAMP
from portal.core.settings import get_settings
from portal.core.time_utils import months_ago, utc_now
from portal.domain.analytics import NewsAnalyticsService
from portal.domain.system_logs import record_log
from portal.maintenance.benchmarks import Benchmarks, memory_snapshot
from portal.maintenance.database import (
    DatabaseMaintenance,
    aggregation_indexes,
    fragmentation_percent,
    maintenance_backend_for,
)
from portal.maintenance.queries import FrequentQueryPolicy, StaticQueryCatalogue
from portal.maintenance.report import Optimization, OptimizationReport
from portal.maintenance.runner import MaintenanceError, MaintenanceStep, StepResult, StepRunner
from portal.repositories import NewsRepository

logger = logging.getLogger(__name__)

HIGH_HIT_RATE = 90
LOW_HIT_RATE = 60
BUSY_CACHE_SIZE = 800
LARGE_CACHE_SIZE = 500
FAST_CLEANUP_INTERVAL = timedelta(seconds=30)
TTL_DECAY = 0.8

RECOMMENDED_POOL = {
    "pool_size": 10,
    "max_overflow": 5,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}
MAX_BACKGROUND_TASKS = 100


@dataclass(frozen=True)
class OptimizerOptions:
    profile_window_seconds: float = 1.0
    slow_query_ms: float = 100.0
    bot_retention_months: int = 6
    stats_retention_days: int = 730
    incomplete_window_days: int = 7
    incomplete_batch_size: int = 50
    max_size_ceiling: int = 2000
    min_ttl: timedelta = timedelta(seconds=60)
    preload_limit: int = 20
    key_pattern_threshold: int = 50
    trace_memory: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "OptimizerOptions":
        return cls(
            profile_window_seconds=settings.maintenance_profile_window_seconds,
            slow_query_ms=settings.maintenance_slow_query_ms,
            bot_retention_months=settings.analytics_bot_retention_months,
            stats_retention_days=settings.analytics_stats_retention_days,
            incomplete_window_days=settings.maintenance_incomplete_window_days,
            incomplete_batch_size=settings.maintenance_incomplete_batch_size,
            max_size_ceiling=settings.cache_max_size_ceiling,
            min_ttl=timedelta(seconds=settings.cache_min_ttl_seconds),
        )


def tune_cache_config(
    config: CacheConfig,
    stats: CacheStatistics,
    *,
    ceiling: int = 2000,
    min_ttl: timedelta = timedelta(seconds=60),
) -> CacheConfig:
    """Derive a new cache config from observed usage.

    A hot, busy cache grows (up to `ceiling`, never shrinking); a cold cache
    gets shorter TTLs (floored at `min_ttl`); a large cache is swept more often.
    """
    changes: dict[str, Any] = {}
    if stats.hit_rate > HIGH_HIT_RATE and stats.size > BUSY_CACHE_SIZE:
        grown = min(ceiling, int(stats.size * 1.5))
        changes["max_size"] = max(config.max_size, grown)
    elif stats.hit_rate < LOW_HIT_RATE:
        changes["default_ttl"] = max(min_ttl, config.default_ttl * TTL_DECAY)

    if stats.size > LARGE_CACHE_SIZE:
        changes["cleanup_interval"] = FAST_CLEANUP_INTERVAL
    return config.with_changes(**changes) if changes else config


def key_pattern_counts(keys: list[str]) -> Counter[str]:
    """Count cache keys by their first two `:`-separated segments."""
    return Counter(":".join(key.split(":")[:2]) for key in keys)


class PerformanceOptimizer:
    def __init__(
        self,
        database: Database,
        cache: TaggedCache,
        analytics: Optional[NewsAnalyticsService] = None,
        *,
        backend: Optional[DatabaseMaintenance] = None,
        options: Optional[OptimizerOptions] = None,
        query_policy: Optional[FrequentQueryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.cache = cache
        self.analytics = analytics or NewsAnalyticsService(database.session_factory, cache)
        self.backend = backend or maintenance_backend_for(database)
        self.options = options or OptimizerOptions()
        self.query_policy = query_policy or StaticQueryCatalogue()
        self._clock = clock
        self.benchmarks = Benchmarks(database, cache, self.analytics)
        self.report = OptimizationReport()
        self.runner = StepRunner(self.report.errors)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def optimize_all(self) -> OptimizationReport:
        self.report = OptimizationReport(started_at=self._clock())
        self.runner = StepRunner(self.report.errors)
        started_tracing = self.options.trace_memory and not tracemalloc.is_tracing()
        if started_tracing:
            tracemalloc.start()
        logger.info("Performance optimization started")
        try:
            await self.measure_baseline()
            await self.optimize_database()
            await self.optimize_cache()
            await self.optimize_analytics()
            await self.optimize_memory()
            await self.optimize_queries()
            await self.measure_final()
            self.report.finished_at = self._clock()
            await self.persist_report()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Performance optimization aborted")
            self.report.errors.append(
                MaintenanceError(operation="optimize_all", error=str(exc) or type(exc).__name__)
            )
        finally:
            if self.report.finished_at is None:
                self.report.finished_at = self._clock()
            if started_tracing:
                tracemalloc.stop()
            await self.database.dispose()

        MAINTENANCE_LAST_RUN_TIMESTAMP.set(self.report.finished_at.timestamp())
        logger.info(
            "Performance optimization finished",
            extra={
                "duration_seconds": self.report.duration_seconds,
                "optimizations": len(self.report.optimizations),
                "errors": len(self.report.errors),
                "improvements": self.report.improvements,
            },
        )
        return self.report

    async def _stage(
        self,
        stage: str,
        impact: str,
        steps: list[MaintenanceStep],
        metrics: Optional[Callable[[list[StepResult]], dict[str, Any]]] = None,
    ) -> list[StepResult]:
        logger.info("Maintenance stage %s", stage)
        results = await self.runner.run(stage, steps)
        actions = [step.summary(result) for step, result in zip(steps, results)]
        self.report.optimizations.append(
            Optimization(
                type=stage.removeprefix("optimize_"),
                actions=actions,
                impact=impact,
                metrics=metrics(results) if metrics else {},
            )
        )
        return results

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    async def measure_baseline(self) -> None:
        self.report.before = await self.benchmarks.snapshot()

    async def measure_final(self) -> None:
        self.report.after = await self.benchmarks.snapshot()

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    async def optimize_database(self) -> list[StepResult]:
        backend, options = self.backend, self.options

        async def flag_unused_indexes() -> list[str]:
            usage = await backend.index_usage()
            unused = [f"{item.table}.{item.index}" for item in usage if item.unused]
            for name in unused:
                logger.warning("Unused index detected: %s", name)
            return unused

        async def analyze_fragmentation() -> dict[str, Any]:
            stats = await backend.storage_stats()
            data = sum(item.data_size for item in stats)
            storage = sum(item.storage_size for item in stats)
            return {
                "data_size": data,
                "storage_size": storage,
                "avg_fragmentation": fragmentation_percent(data, storage),
                "tables": [item.to_dict() for item in stats],
            }

        steps = [
            MaintenanceStep(
                "find_slow_queries",
                lambda: backend.find_slow_queries(
                    options.profile_window_seconds, options.slow_query_ms
                ),
                lambda found: f"Slow queries found: {len(found)}",
            ),
            MaintenanceStep(
                "rebuild_indexes",
                backend.rebuild_indexes,
                lambda tables: f"Indexes rebuilt on {len(tables)} tables",
            ),
            MaintenanceStep(
                "flag_unused_indexes",
                flag_unused_indexes,
                lambda unused: f"Unused indexes flagged: {len(unused)}",
            ),
            MaintenanceStep(
                "compact_tables",
                backend.compact,
                lambda tables: f"Tables compacted: {', '.join(tables)}",
            ),
            MaintenanceStep(
                "analyze_fragmentation",
                analyze_fragmentation,
                lambda info: f"Fragmentation analyzed: {info['avg_fragmentation']}%",
            ),
        ]

        def metrics(results: list[StepResult]) -> dict[str, Any]:
            fragmentation = results[-1].detail if results[-1].ok else {}
            return {"dialect": backend.dialect, "fragmentation": fragmentation}

        return await self._stage("optimize_database", "medium", steps, metrics)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def optimize_cache(self) -> list[StepResult]:
        stats_before = self.cache.get_statistics()

        async def cleanup() -> int:
            return self.cache.cleanup()

        async def tune_config() -> dict[str, Any]:
            before = self.cache.config
            after = tune_cache_config(
                before,
                self.cache.get_statistics(),
                ceiling=self.options.max_size_ceiling,
                min_ttl=self.options.min_ttl,
            )
            if after != before:
                self.cache.reconfigure(after)
            return {"before": before.to_dict(), "after": after.to_dict()}

        async def analyze_key_patterns() -> dict[str, int]:
            counts = key_pattern_counts(self.cache.keys())
            crowded = {
                pattern: count
                for pattern, count in counts.items()
                if count > self.options.key_pattern_threshold
            }
            for pattern, count in crowded.items():
                logger.warning("Heavily used cache key pattern: %s (%d keys)", pattern, count)
            return crowded

        steps = [
            MaintenanceStep("cleanup", cleanup, lambda count: f"Expired entries removed: {count}"),
            MaintenanceStep(
                "tune_config",
                tune_config,
                lambda change: (
                    "Configuration tuned"
                    if change["before"] != change["after"]
                    else "Configuration unchanged"
                ),
            ),
            MaintenanceStep(
                "preload_critical_data",
                self.preload_critical_data,
                lambda count: f"Critical data preloaded: {count} entries",
            ),
            MaintenanceStep(
                "analyze_key_patterns",
                analyze_key_patterns,
                lambda crowded: f"Crowded key patterns: {len(crowded)}",
            ),
        ]

        def metrics(_results: list[StepResult]) -> dict[str, Any]:
            stats_after = self.cache.get_statistics()
            return {
                "hit_rate_improvement": round(stats_after.hit_rate - stats_before.hit_rate, 2),
                "size_before": stats_before.size,
                "size_after": stats_after.size,
            }

        return await self._stage("optimize_cache", "high", steps, metrics)

    async def preload_critical_data(self) -> int:
        """Warm the most viewed published articles and the 30-day global stats."""
        async with self.database.session() as session:
            popular = (
                await NewsRepository(session).most_viewed_published(self.options.preload_limit)
            ).unwrap()
            for news in popular:
                self.cache.set(
                    CacheKeys.news_details(news.id),
                    news.to_dict(),
                    ttl=CacheTTL.MEDIUM,
                    tags=(CacheTags.NEWS, CacheTags.POPULAR, CacheTags.article(news.id)),
                )
        await self.analytics.get_global_stats(30)
        return len(popular) + 1

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def cleanup_analytics_data(self) -> dict[str, Any]:
        """Purge bot events past the retention window; views and shares are separate deletes."""
        cutoff = months_ago(self._clock(), self.options.bot_retention_months)
        deleted = await self.analytics.purge_bot_events(cutoff)
        return {**deleted, "total": sum(deleted.values()), "cutoff": cutoff.isoformat()}

    async def optimize_analytics(self) -> list[StepResult]:
        backend, options = self.backend, self.options

        async def ensure_indexes() -> list[str]:
            created = []
            for index in aggregation_indexes():
                if await backend.ensure_index(index):
                    created.append(index.name)
            return created

        steps = [
            MaintenanceStep(
                "cleanup_analytics_data",
                self.cleanup_analytics_data,
                lambda info: f"Obsolete bot events removed: {info['total']}",
            ),
            MaintenanceStep(
                "cleanup_old_stats",
                lambda: self.analytics.cleanup_old_stats(options.stats_retention_days),
                lambda info: f"Old daily stats removed: {info['deleted_stats']}",
            ),
            MaintenanceStep(
                "ensure_aggregation_indexes",
                ensure_indexes,
                lambda created: f"Aggregation indexes created: {len(created)}",
            ),
            MaintenanceStep(
                "ensure_monthly_view",
                backend.ensure_monthly_view,
                lambda name: f"Monthly rollup view ready: {name}",
            ),
            MaintenanceStep(
                "refresh_incomplete_stats",
                lambda: self.analytics.refresh_incomplete_stats(
                    options.incomplete_window_days, options.incomplete_batch_size
                ),
                lambda count: f"Incomplete daily stats recomputed: {count}",
            ),
        ]
        return await self._stage("optimize_analytics", "high", steps)

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    async def optimize_memory(self) -> list[StepResult]:
        memory_before = memory_snapshot()

        async def collect_garbage() -> int:
            return gc.collect()

        async def inspect_pool() -> dict[str, Any]:
            status = self.backend.pool_status()
            logger.info(
                "Connection pool status",
                extra={"current": status, "recommended": RECOMMENDED_POOL},
            )
            return status

        async def count_background_tasks() -> int:
            tasks = len(asyncio.all_tasks())
            if tasks > MAX_BACKGROUND_TASKS:
                logger.warning("Too many background tasks alive: %d", tasks)
            return tasks

        steps = [
            MaintenanceStep(
                "collect_garbage",
                collect_garbage,
                lambda collected: f"Garbage collected: {collected} objects",
            ),
            MaintenanceStep(
                "inspect_connection_pool",
                inspect_pool,
                lambda status: f"Connection pool inspected ({status['pool_class']})",
            ),
            MaintenanceStep(
                "count_background_tasks",
                count_background_tasks,
                lambda tasks: f"Background tasks alive: {tasks}",
            ),
        ]

        def metrics(_results: list[StepResult]) -> dict[str, Any]:
            memory_after = memory_snapshot()
            return {
                "traced_before": memory_before.traced_current,
                "traced_after": memory_after.traced_current,
                "memory_freed": memory_before.traced_current - memory_after.traced_current,
            }

        return await self._stage("optimize_memory", "medium", steps, metrics)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def optimize_queries(self) -> list[StepResult]:
        shapes = list(self.query_policy.frequent_queries())

        async def analyze_frequent_queries() -> list[str]:
            high = [shape.pattern for shape in shapes if shape.frequency == "high"]
            for pattern in high:
                logger.info("Frequent query detected: %s", pattern)
            return high

        async def check_index_coverage() -> list[str]:
            uncovered = []
            for shape in shapes:
                if not shape.columns:
                    continue
                leading = await self.backend.leading_index_columns(shape.table)
                if not leading.intersection(shape.columns):
                    logger.warning("Frequent query has no supporting index: %s", shape.pattern)
                    uncovered.append(shape.pattern)
            return uncovered

        steps = [
            MaintenanceStep(
                "analyze_frequent_queries",
                analyze_frequent_queries,
                lambda high: f"Frequent queries analyzed: {len(shapes)} ({len(high)} high)",
            ),
            MaintenanceStep(
                "check_index_coverage",
                check_index_coverage,
                lambda uncovered: f"Queries without a supporting index: {len(uncovered)}",
            ),
            MaintenanceStep(
                "cache_expensive_queries",
                self.cache_expensive_queries,
                lambda count: f"Expensive queries cached: top {count} articles",
            ),
        ]
        return await self._stage("optimize_queries", "high", steps)

    async def cache_expensive_queries(self) -> int:
        async def top_articles() -> list[dict[str, Any]]:
            ranking = await self.analytics.top_articles_since(days=30, limit=20)
            return [
                {
                    "news_id": item.news_id,
                    "title": item.title,
                    "total_views": item.total_views,
                    "total_shares": item.total_shares,
                }
                for item in ranking
            ]

        cached = await self.cache.wrap(
            CacheKeys.top_articles_monthly(),
            top_articles,
            ttl=CacheTTL.LONG,
            tags=(CacheTags.ANALYTICS, CacheTags.EXPENSIVE),
        )
        return len(cached)

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    async def persist_report(self) -> None:
        """Log the rendered report and store it as a `maintenance` system log row."""
        report = self.report
        logger.info("Optimization report\n%s", report.render_text())
        try:
            async with self.database.session() as session:
                await record_log(
                    session,
                    level="warning" if report.errors else "success",
                    type="maintenance",
                    category="system",
                    priority="medium" if report.errors else "low",
                    message=(
                        f"Performance optimization: {len(report.optimizations)} stages, "
                        f"{len(report.errors)} errors"
                    ),
                    details={
                        "duration_seconds": report.duration_seconds,
                        "improvements": report.improvements,
                        "optimizations": [item.to_dict() for item in report.optimizations],
                        "errors": [error.to_dict() for error in report.errors],
                    },
                )
        except SQLAlchemyError as exc:
            logger.error("Could not persist optimization report: %s", exc)
            report.errors.append(MaintenanceError(operation="report.persist", error=str(exc)))


async def run_optimization(
    cache: TaggedCache,
    settings: Any = None,
    *,
    database_url: Optional[str] = None,
    trace_memory: bool = False,
) -> OptimizationReport:
    """Run one optimization pass on a dedicated database handle.

    The handle is disposed by `optimize_all` whatever happens, so the
    application's own engine is never touched. `trace_memory` turns on
    tracemalloc for the run; leave it off inside the API process.
    """
    settings = settings or get_settings()
    database = Database(url=database_url, settings=settings)
    analytics = NewsAnalyticsService(
        database.session_factory,
        cache,
        global_stats_ttl=timedelta(seconds=settings.analytics_global_stats_ttl_seconds),
    )
    optimizer = PerformanceOptimizer(
        database,
        cache,
        analytics,
        options=replace(OptimizerOptions.from_settings(settings), trace_memory=trace_memory),
    )
    return await optimizer.optimize_all()


__all__ = [
    "OptimizerOptions",
    "PerformanceOptimizer",
    "key_pattern_counts",
    "run_optimization",
    "tune_cache_config",
]
