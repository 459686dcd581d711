from __future__ import annotations

import asyncio

import pytest

from foundry_client.cache.keys import CacheKeys
from foundry_client.cache.ttl_cache import TTLCache
from foundry_client.config import CacheOptions


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTTLCache:
    def test_set_and_get(self) -> None:
        cache = TTLCache(CacheOptions(ttl_seconds=60, max_size=10))
        cache.set("k", "v")
        assert cache.get("k") == "v"

    def test_missing_key_returns_default(self) -> None:
        cache = TTLCache()
        assert cache.get("nope") is None
        assert cache.get("nope", "fallback") == "fallback"

    def test_delete(self) -> None:
        cache = TTLCache()
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.get("k") is None
        assert cache.delete("k") is False

    def test_clear_resets_entries_and_stats(self) -> None:
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.get("missing")

        cache.clear()

        stats = cache.get_stats()
        assert stats.size == 0
        assert stats.hits == 0
        assert stats.misses == 0
        assert stats.evictions == 0

    def test_entry_expires_after_ttl(self) -> None:
        clock = FakeClock()
        cache = TTLCache(CacheOptions(ttl_seconds=60), clock=clock)
        cache.set("k", "v", 1)

        clock.advance(0.5)
        assert cache.get("k") == "v"

        clock.advance(0.6)
        assert cache.get("k") is None
        assert len(cache) == 0
        assert cache.get_stats().misses == 1

    def test_default_ttl_applies_without_override(self) -> None:
        clock = FakeClock()
        cache = TTLCache(CacheOptions(ttl_seconds=10), clock=clock)
        cache.set("k", "v")

        clock.advance(9)
        assert cache.get("k") == "v"
        clock.advance(2)
        assert cache.get("k") is None

    def test_custom_ttl_overrides_default(self) -> None:
        clock = FakeClock()
        cache = TTLCache(CacheOptions(ttl_seconds=1), clock=clock)
        cache.set("k", "v", 100)

        clock.advance(50)
        assert cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_expires_in_real_time(self) -> None:
        cache = TTLCache(CacheOptions(ttl_seconds=60))
        cache.set("k", "v", 1)
        assert cache.get("k") == "v"

        await asyncio.sleep(1.1)
        assert cache.get("k") is None
        await cache.close()

    def test_evicts_least_recently_used(self) -> None:
        cache = TTLCache(CacheOptions(max_size=3))
        cache.set("k1", 1)
        cache.set("k2", 2)
        cache.set("k3", 3)

        cache.get("k1")
        cache.get("k3")
        cache.set("k4", 4)

        assert sorted(cache.keys()) == ["k1", "k3", "k4"]
        assert cache.get("k2") is None
        assert cache.get_stats().evictions == 1

    def test_never_exceeds_max_size(self) -> None:
        cache = TTLCache(CacheOptions(max_size=5))
        for i in range(50):
            cache.set(f"k{i}", i)
            assert len(cache) <= 5
        assert cache.get_stats().evictions == 45

    def test_overwriting_existing_key_does_not_evict(self) -> None:
        cache = TTLCache(CacheOptions(max_size=2))
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert cache.get("b") == 2
        assert cache.get_stats().evictions == 0

    def test_overwrite_refreshes_recency(self) -> None:
        cache = TTLCache(CacheOptions(max_size=2))
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        cache.set("c", 4)

        assert cache.get("b") is None
        assert cache.get("a") == 3

    def test_stores_falsy_values(self) -> None:
        cache = TTLCache()
        cache.set("zero", 0)
        cache.set("none", None)

        assert cache.get("zero", "missing") == 0
        assert cache.get("none", "missing") is None
        assert cache.get_stats().hits == 2

    def test_stats_hit_rate_is_rounded(self) -> None:
        cache = TTLCache(CacheOptions(max_size=7))
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        cache.get("c")

        stats = cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 2
        assert stats.hit_rate == 0.33
        assert stats.size == 1
        assert stats.max_size == 7

    def test_stats_hit_rate_without_lookups(self) -> None:
        assert TTLCache().get_stats().hit_rate == 0.0

    def test_prune_removes_only_expired_entries(self) -> None:
        clock = FakeClock()
        cache = TTLCache(CacheOptions(ttl_seconds=100), clock=clock)
        cache.set("short", 1, 5)
        cache.set("long", 2)

        clock.advance(10)

        assert cache.prune() == 1
        assert cache.keys() == ["long"]

    def test_sweep_interval_has_floor(self) -> None:
        assert TTLCache(CacheOptions(ttl_seconds=40)).sweep_interval == 30
        assert TTLCache(CacheOptions(ttl_seconds=400)).sweep_interval == 100

    @pytest.mark.asyncio
    async def test_sweep_starts_on_set_and_stops_on_close(self) -> None:
        cache = TTLCache()
        cache.set("k", "v")
        task = cache._sweep_task
        assert task is not None and not task.done()

        await cache.close()
        assert task.cancelled()
        assert cache._sweep_task is None


class TestGetOrSet:
    @pytest.mark.asyncio
    async def test_returns_cached_value_without_calling_factory(self) -> None:
        cache = TTLCache()
        cache.set("k", "cached")
        calls = 0

        async def factory() -> str:
            nonlocal calls
            calls += 1
            return "fresh"

        assert await cache.get_or_set("k", factory) == "cached"
        assert calls == 0
        await cache.close()

    @pytest.mark.asyncio
    async def test_calls_factory_and_stores_result(self) -> None:
        cache = TTLCache()
        calls = 0

        async def factory() -> dict:
            nonlocal calls
            calls += 1
            return {"id": 1}

        assert await cache.get_or_set("k", factory) == {"id": 1}
        assert await cache.get_or_set("k", factory) == {"id": 1}
        assert calls == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_factory_error_is_not_cached(self) -> None:
        cache = TTLCache()

        async def failing() -> str:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cache.get_or_set("k", failing)
        assert "k" not in cache.keys()

    @pytest.mark.asyncio
    async def test_concurrent_misses_each_call_factory(self) -> None:
        cache = TTLCache()
        calls = 0

        async def slow() -> int:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return calls

        await asyncio.gather(cache.get_or_set("k", slow), cache.get_or_set("k", slow))
        assert calls == 2
        await cache.close()


class TestDisabledCache:
    def test_get_always_misses(self) -> None:
        cache = TTLCache(CacheOptions(enabled=False))
        cache.set("k", "v")
        assert cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_get_or_set_always_calls_factory(self) -> None:
        cache = TTLCache(CacheOptions(enabled=False))
        calls = 0

        async def factory() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await cache.get_or_set("k", factory) == 1
        assert await cache.get_or_set("k", factory) == 2
        assert cache._sweep_task is None


class TestCacheKeys:
    def test_equivalent_searches_share_a_key(self) -> None:
        assert CacheKeys.actor_search("  Hero ", None, None) == CacheKeys.actor_search(
            "Hero", None, 10
        )

    def test_distinct_searches_never_collide(self) -> None:
        assert CacheKeys.actor_search("a:npc") != CacheKeys.actor_search("a", "npc")
        assert CacheKeys.item_search("x", "weapon") != CacheKeys.item_search(
            "x", None, "weapon"
        )
        assert CacheKeys.actor_search("x", limit=5) != CacheKeys.actor_search("x", limit=6)

    def test_scene_keys(self) -> None:
        assert CacheKeys.scene() == "scene:current"
        assert CacheKeys.scene("s1") != CacheKeys.scene()
        assert CacheKeys.world_info() == "world:info"
