import tracemalloc
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from portal.core.cache import CacheConfig, CacheKeys, CacheStatistics, CacheTags
from portal.domain.analytics_models import ViewEvent
from portal.domain.models import SystemLog
from portal.maintenance.database import SQLiteMaintenance, StorageStats, fragmentation_percent
from portal.maintenance.optimizer import (
    OptimizerOptions,
    PerformanceOptimizer,
    key_pattern_counts,
    run_optimization,
    tune_cache_config,
)

NOW = datetime(2026, 10, 15, 3, 0, tzinfo=timezone.utc)
STAGES = ["database", "cache", "analytics", "memory", "queries"]


def _stats(*, size: int, hit_rate: float) -> CacheStatistics:
    return CacheStatistics(
        size=size,
        max_size=1000,
        hits=0,
        misses=0,
        sets=0,
        invalidations=0,
        evictions=0,
        hit_rate=hit_rate,
        memory_usage=0,
    )


class _BrokenReindex(SQLiteMaintenance):
    async def rebuild_indexes(self, tables=()):
        raise RuntimeError("database is locked")


def _optimizer(database, cache, **kwargs):
    return PerformanceOptimizer(
        database,
        cache,
        options=OptimizerOptions(profile_window_seconds=0),
        clock=lambda: NOW,
        **kwargs,
    )


async def _maintenance_logs(database):
    async with database.session() as session:
        return (
            await session.execute(select(SystemLog).where(SystemLog.type == "maintenance"))
        ).scalars().all()


def test_hot_busy_cache_grows_up_to_ceiling():
    config = CacheConfig(max_size=1000)

    tuned = tune_cache_config(config, _stats(size=900, hit_rate=95), ceiling=2000)
    capped = tune_cache_config(config, _stats(size=1800, hit_rate=95), ceiling=2000)

    assert tuned.max_size == 1350
    assert capped.max_size == 2000
    assert tuned.cleanup_interval == timedelta(seconds=30)


def test_growth_never_shrinks_max_size():
    config = CacheConfig(max_size=1900)

    tuned = tune_cache_config(config, _stats(size=810, hit_rate=99), ceiling=2000)

    assert tuned.max_size == 1900


def test_cold_cache_ttl_decays_to_floor():
    config = CacheConfig(default_ttl=timedelta(seconds=300))

    once = tune_cache_config(config, _stats(size=10, hit_rate=20))
    floored = tune_cache_config(
        CacheConfig(default_ttl=timedelta(seconds=70)), _stats(size=10, hit_rate=20)
    )

    assert once.default_ttl == timedelta(seconds=240)
    assert floored.default_ttl == timedelta(seconds=60)
    assert once.cleanup_interval == config.cleanup_interval


def test_healthy_cache_config_is_unchanged():
    config = CacheConfig()

    assert tune_cache_config(config, _stats(size=100, hit_rate=75)) is config


def test_key_pattern_counts_groups_by_prefix():
    counts = key_pattern_counts(
        ["news:1:details", "news:2:details", "news:stats:global:30", "expensive:top"]
    )

    assert counts == {"news:1": 1, "news:2": 1, "news:stats": 1, "expensive:top": 1}


@pytest.mark.asyncio
async def test_optimize_all_produces_report_and_log(database, cache, make_news):
    await make_news(title="Lancement du portail", view_count=12)

    report = await _optimizer(database, cache).optimize_all()

    assert [item.type for item in report.optimizations] == STAGES
    assert report.errors == []
    assert report.before is not None and report.after is not None
    assert report.finished_at is not None
    assert "PERFORMANCE OPTIMIZATION REPORT" in report.render_text()
    assert database._engine is None

    logs = await _maintenance_logs(database)
    assert len(logs) == 1
    assert logs[0].level == "success"
    assert logs[0].category == "system"


@pytest.mark.asyncio
async def test_failing_step_does_not_stop_the_run(database, cache):
    optimizer = _optimizer(database, cache, backend=_BrokenReindex(database))

    report = await optimizer.optimize_all()

    assert [error.operation for error in report.errors] == ["optimize_database.rebuild_indexes"]
    assert [item.type for item in report.optimizations] == STAGES
    assert "rebuild_indexes: failed (database is locked)" in report.optimization("database").actions

    logs = await _maintenance_logs(database)
    assert logs[0].level == "warning"


@pytest.mark.asyncio
async def test_unexpected_failure_aborts_but_still_disposes(database, cache):
    optimizer = _optimizer(database, cache)

    async def broken_snapshot():
        raise RuntimeError("benchmark crashed")

    optimizer.benchmarks.snapshot = broken_snapshot

    report = await optimizer.optimize_all()

    assert [error.operation for error in report.errors] == ["optimize_all"]
    assert report.errors[0].error == "benchmark crashed"
    assert report.optimizations == []
    assert report.finished_at == NOW
    assert database._engine is None


@pytest.mark.asyncio
async def test_preload_caches_popular_articles(database, cache, make_news):
    popular = await make_news(title="Palmarès des lycées", view_count=50)
    await make_news(title="Brouillon", status="draft", view_count=500)

    count = await _optimizer(database, cache).preload_critical_data()

    assert count == 2
    assert cache.get(CacheKeys.news_details(popular.id))["title"] == "Palmarès des lycées"
    assert CacheKeys.global_stats(30) in cache.keys()
    assert cache.invalidate_by_tags(CacheTags.POPULAR) == 1


@pytest.mark.asyncio
async def test_cleanup_analytics_data_uses_retention_months(database, cache, make_news):
    news = await make_news(title="Ancien communiqué")
    async with database.session() as session:
        session.add_all(
            [
                ViewEvent(
                    news_id=news.id,
                    session_id="crawler",
                    is_bot=True,
                    timestamp=NOW - timedelta(days=200),
                ),
                ViewEvent(
                    news_id=news.id,
                    session_id="crawler",
                    is_bot=True,
                    timestamp=NOW - timedelta(days=20),
                ),
            ]
        )
        await session.commit()

    outcome = await _optimizer(database, cache).cleanup_analytics_data()

    assert outcome["total"] == 1
    assert outcome["view_events"] == 1
    assert outcome["cutoff"] == "2026-04-15T03:00:00+00:00"


@pytest.mark.asyncio
async def test_cache_expensive_queries_is_tagged(database, cache):
    count = await _optimizer(database, cache).cache_expensive_queries()

    assert count == 0
    assert cache.get(CacheKeys.top_articles_monthly()) == []
    assert cache.invalidate_by_tags(CacheTags.EXPENSIVE) == 1


@pytest.mark.asyncio
async def test_run_optimization_uses_a_dedicated_handle(database, cache, settings):
    report = await run_optimization(cache, settings, database_url=database.url)

    assert [item.type for item in report.optimizations] == STAGES
    assert len(await _maintenance_logs(database)) == 1


def test_fragmentation_is_unused_share_of_storage():
    assert fragmentation_percent(80, 100) == 20.0
    assert fragmentation_percent(0, 0) == 0.0
    assert fragmentation_percent(100, 100) == 0.0

    stats = StorageStats(table="view_events", data_size=80, storage_size=100)
    assert stats.fragmentation == 20.0
    assert stats.to_dict()["fragmentation"] == 20.0


@pytest.mark.asyncio
@pytest.mark.parametrize("trace_memory", [False, True])
async def test_memory_tracing_is_opt_in(database, cache, monkeypatch, trace_memory):
    if tracemalloc.is_tracing():
        pytest.skip("tracemalloc already enabled for this interpreter")
    seen = []

    async def record_tracing(self):
        seen.append(tracemalloc.is_tracing())

    monkeypatch.setattr(PerformanceOptimizer, "optimize_memory", record_tracing)
    optimizer = PerformanceOptimizer(
        database,
        cache,
        options=OptimizerOptions(profile_window_seconds=0, trace_memory=trace_memory),
        clock=lambda: NOW,
    )

    await optimizer.optimize_all()

    assert seen == [trace_memory]
    assert tracemalloc.is_tracing() is False
