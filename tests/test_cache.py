"""Behaviour of the in-process tagged cache."""

from datetime import timedelta

import pytest

from portal.core.cache import CacheConfig, CacheKeys, CacheTags, TaggedCache


@pytest.fixture
def clocked_cache(clock):
    return TaggedCache(CacheConfig(max_size=3, default_ttl=timedelta(seconds=60)), clock=clock)


def test_set_then_get_returns_value(clocked_cache):
    clocked_cache.set("news:1:details", {"title": "Budget 2026"})

    assert clocked_cache.get("news:1:details") == {"title": "Budget 2026"}
    assert clocked_cache.get("missing") is None
    assert clocked_cache.get("missing", "fallback") == "fallback"


def test_entry_expires_after_ttl(clocked_cache, clock):
    clocked_cache.set("k", 1, ttl=timedelta(seconds=10))

    clock.advance(9.9)
    assert clocked_cache.get("k") == 1

    clock.advance(0.1)
    assert clocked_cache.get("k") is None
    assert len(clocked_cache) == 0


def test_zero_ttl_is_immediately_expired(clocked_cache):
    clocked_cache.set("k", "v", ttl=timedelta(0))

    assert clocked_cache.get("k") is None


@pytest.mark.asyncio
async def test_wrap_calls_producer_once(clocked_cache):
    calls = []

    async def producer():
        calls.append(1)
        return {"views": 42}

    first = await clocked_cache.wrap("stats", producer, tags=[CacheTags.ANALYTICS])
    second = await clocked_cache.wrap("stats", producer)

    assert first == second == {"views": 42}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_wrap_caches_none_result(clocked_cache):
    calls = []

    async def producer():
        calls.append(1)
        return None

    assert await clocked_cache.wrap("nothing", producer) is None
    assert await clocked_cache.wrap("nothing", producer) is None
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_wrap_propagates_producer_error_without_storing(clocked_cache):
    async def producer():
        raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError, match="database unavailable"):
        await clocked_cache.wrap("stats", producer)

    assert "stats" not in clocked_cache.keys()
    assert clocked_cache.get_statistics().sets == 0


def test_invalidate_by_tags_only_drops_tagged_entries(clocked_cache):
    clocked_cache.set("news:1:details", 1, tags=[CacheTags.NEWS, CacheTags.article(1)])
    clocked_cache.set("news:2:details", 2, tags=[CacheTags.NEWS, CacheTags.article(2)])
    clocked_cache.set("expensive:x", 3, tags=[CacheTags.EXPENSIVE])

    assert clocked_cache.invalidate_by_tags(CacheTags.article(1)) == 1
    assert clocked_cache.keys() == ["news:2:details", "expensive:x"]

    assert clocked_cache.invalidate_by_tags([CacheTags.NEWS, CacheTags.EXPENSIVE]) == 2
    assert len(clocked_cache) == 0
    assert clocked_cache.get_statistics().invalidations == 3


def test_invalidate_by_pattern(clocked_cache):
    clocked_cache.set(CacheKeys.global_stats(30), 1)
    clocked_cache.set(CacheKeys.global_stats(7), 2)
    clocked_cache.set(CacheKeys.news_details(5), 3)

    assert clocked_cache.invalidate_by_pattern("news:stats:*") == 2
    assert clocked_cache.keys() == [CacheKeys.news_details(5)]
    assert clocked_cache.invalidate_by_pattern("nothing:*") == 0


def test_lru_eviction_when_full(clocked_cache):
    clocked_cache.set("a", 1)
    clocked_cache.set("b", 2)
    clocked_cache.set("c", 3)
    clocked_cache.get("a")

    clocked_cache.set("d", 4)

    assert clocked_cache.keys() == ["c", "a", "d"]
    assert clocked_cache.get_statistics().evictions == 1


def test_full_cache_drops_expired_before_evicting(clocked_cache, clock):
    clocked_cache.set("short", 1, ttl=timedelta(seconds=1))
    clocked_cache.set("b", 2)
    clocked_cache.set("c", 3)
    clock.advance(2)

    clocked_cache.set("d", 4)

    assert sorted(clocked_cache.keys()) == ["b", "c", "d"]
    assert clocked_cache.get_statistics().evictions == 0


def test_cleanup_removes_only_expired(clocked_cache, clock):
    clocked_cache.set("short", 1, ttl=timedelta(seconds=5))
    clocked_cache.set("long", 2, ttl=timedelta(seconds=500))
    clock.advance(10)

    assert clocked_cache.cleanup() == 1
    assert clocked_cache.keys() == ["long"]


def test_statistics_hit_rate(clocked_cache):
    clocked_cache.set("k", 1)
    clocked_cache.get("k")
    clocked_cache.get("k")
    clocked_cache.get("missing")

    stats = clocked_cache.get_statistics()
    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == 66.67
    assert stats.size == 1
    assert stats.max_size == 3


def test_empty_cache_hit_rate_is_zero(clocked_cache):
    assert clocked_cache.get_statistics().hit_rate == 0.0


def test_debug_info_lists_most_recent_first(clocked_cache):
    clocked_cache.set("a", 1, tags=["x"])
    clocked_cache.set("b", 2)
    clocked_cache.get("a")

    info = clocked_cache.get_debug_info()

    assert [entry["key"] for entry in info["entries"]] == ["a", "b"]
    assert info["entries"][0]["tags"] == ["x"]
    assert info["entries"][0]["access_count"] == 1
    assert info["config"]["max_size"] == 3


def test_reconfigure_shrinks_to_new_max_size(clocked_cache):
    for key in ("a", "b", "c"):
        clocked_cache.set(key, key)

    clocked_cache.reconfigure(clocked_cache.config.with_changes(max_size=1))

    assert clocked_cache.keys() == ["c"]
    assert clocked_cache.config.max_size == 1


def test_reset_statistics_keeps_entries(clocked_cache):
    clocked_cache.set("k", 1)
    clocked_cache.get("k")

    clocked_cache.reset_statistics()

    stats = clocked_cache.get_statistics()
    assert stats.hits == 0
    assert stats.sets == 0
    assert stats.size == 1


def test_clear_returns_removed_count(clocked_cache):
    clocked_cache.set("a", 1)
    clocked_cache.set("b", 2)

    assert clocked_cache.clear() == 2
    assert len(clocked_cache) == 0


@pytest.mark.parametrize(
    "changes",
    [
        {"max_size": 0},
        {"max_size": -5},
        {"default_ttl": timedelta(seconds=-1)},
        {"cleanup_interval": timedelta(0)},
    ],
)
def test_invalid_config_is_rejected(changes):
    with pytest.raises(ValueError):
        CacheConfig(**changes)
    with pytest.raises(ValueError):
        CacheConfig().with_changes(**changes)


def test_single_slot_cache_evicts_previous_entry(clock):
    cache = TaggedCache(CacheConfig(max_size=1), clock=clock)

    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.keys() == ["b"]
    assert cache.get_statistics().evictions == 1
