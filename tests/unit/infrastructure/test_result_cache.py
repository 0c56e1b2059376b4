"""Tests for ResultCache (TTL, LRU eviction, single-flight, persistence)."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import FakeClock
from vodhub.infrastructure.cache import ResultCache, measure
from vodhub.infrastructure.cache.result_cache import STORE_PREFIX
from vodhub.infrastructure.stores import MemoryStore


class TestFingerprint:
    def test_shape(self) -> None:
        key = ResultCache.fingerprint("a", "search", {"keyword": "x"})
        op, site, digest = key.split(":")
        assert (op, site) == ("search", "a")
        assert len(digest) == 16

    def test_keyword_normalized(self) -> None:
        a = ResultCache.fingerprint("a", "search", {"keyword": "  Iron   Man "})
        b = ResultCache.fingerprint("a", "search", {"keyword": "iron man"})
        assert a == b

    def test_param_order_irrelevant(self) -> None:
        a = ResultCache.fingerprint("a", "listCategory", {"category_id": "1", "page": 2})
        b = ResultCache.fingerprint("a", "listCategory", {"page": 2, "category_id": "1"})
        assert a == b

    def test_site_and_params_distinguish(self) -> None:
        base = ResultCache.fingerprint("a", "search", {"keyword": "x"})
        assert ResultCache.fingerprint("b", "search", {"keyword": "x"}) != base
        assert ResultCache.fingerprint("a", "search", {"keyword": "y"}) != base


class TestTtl:
    async def test_round_trip_before_ttl(self, clock: FakeClock) -> None:
        cache = ResultCache(10_000, clock=clock)
        payload = [{"title": "T", "site": "a"}]
        await cache.put("k", payload, ttl=60)
        clock.advance(59)
        assert await cache.get("k") == payload

    async def test_absent_after_ttl_without_invalidation(self, clock: FakeClock) -> None:
        cache = ResultCache(10_000, clock=clock)
        await cache.put("k", [1], ttl=60)
        clock.advance(60)
        assert await cache.get("k") is None
        assert "k" not in cache
        assert cache.size_bytes == 0

    async def test_zero_ttl_is_not_stored(self, clock: FakeClock) -> None:
        cache = ResultCache(10_000, clock=clock)
        await cache.put("k", [1], ttl=0)
        assert len(cache) == 0

    async def test_invalidate(self, clock: FakeClock) -> None:
        cache = ResultCache(10_000, clock=clock)
        await cache.put("k", [1], ttl=60)
        assert await cache.invalidate("k") is True
        assert await cache.invalidate("k") is False
        assert await cache.get("k") is None


class TestEviction:
    async def test_total_stays_within_budget_and_lru_goes_first(
        self, clock: FakeClock
    ) -> None:
        entry = "x" * 98  # JSON-encoded: 100 bytes
        assert measure(entry) == 100
        cache = ResultCache(300, clock=clock)
        for key in ("a", "b", "c"):
            await cache.put(key, entry, ttl=60)
        # Touch "a" so "b" becomes least recently used.
        assert await cache.get("a") == entry

        await cache.put("d", entry, ttl=60)

        assert cache.size_bytes <= 300
        assert "b" not in cache
        assert all(k in cache for k in ("a", "c", "d"))
        assert cache.stats()["evictions"] == 1

    async def test_large_put_evicts_several(self, clock: FakeClock) -> None:
        cache = ResultCache(300, clock=clock)
        for key in ("a", "b", "c"):
            await cache.put(key, "x" * 98, ttl=60)
        await cache.put("big", "y" * 198, ttl=60)
        assert "a" not in cache and "b" not in cache
        assert "c" in cache and "big" in cache
        assert cache.size_bytes == 300

    async def test_entry_larger_than_budget_not_stored(self, clock: FakeClock) -> None:
        cache = ResultCache(50, clock=clock)
        await cache.put("small", "s", ttl=60)
        await cache.put("huge", "h" * 100, ttl=60)
        assert "huge" not in cache
        assert "small" in cache

    async def test_replacing_key_updates_size(self, clock: FakeClock) -> None:
        cache = ResultCache(1_000, clock=clock)
        await cache.put("k", "x" * 98, ttl=60)
        await cache.put("k", "x" * 8, ttl=60)
        assert cache.size_bytes == 10
        assert len(cache) == 1

    async def test_evicted_keys_leave_no_locks(self, clock: FakeClock) -> None:
        cache = ResultCache(200, clock=clock)
        for i in range(500):
            await cache.put(f"k{i}", "x" * 48, ttl=60)
            await cache.get_or_load(f"l{i}", lambda: _value("y" * 48), ttl=60)
        assert len(cache) <= 4
        assert len(cache._locks) == 0
        await cache.invalidate("k499")
        assert len(cache._locks) == 0


async def _value(payload: str) -> str:
    return payload


class TestGetOrLoad:
    async def test_miss_then_hit(self, clock: FakeClock) -> None:
        cache = ResultCache(10_000, clock=clock)
        calls = 0

        async def loader() -> list[int]:
            nonlocal calls
            calls += 1
            return [1, 2]

        assert await cache.get_or_load("k", loader, 60) == ([1, 2], False)
        assert await cache.get_or_load("k", loader, 60) == ([1, 2], True)
        assert calls == 1

    async def test_concurrent_misses_load_once(self, clock: FakeClock) -> None:
        cache = ResultCache(10_000, clock=clock)
        calls = 0

        async def loader() -> list[int]:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return [calls]

        results = await asyncio.gather(
            *(cache.get_or_load("k", loader, 60) for _ in range(5))
        )
        assert calls == 1
        assert [payload for payload, _ in results] == [[1]] * 5
        assert sum(1 for _, hit in results if not hit) == 1

    async def test_loader_error_propagates_and_stores_nothing(
        self, clock: FakeClock
    ) -> None:
        cache = ResultCache(10_000, clock=clock)

        async def loader() -> list[int]:
            raise RuntimeError("site down")

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", loader, 60)
        assert "k" not in cache

    async def test_invalidate_hands_lock_to_queued_loader(self, clock: FakeClock) -> None:
        deleting = asyncio.Event()
        loading = asyncio.Event()

        class SlowDeleteStore(MemoryStore):
            async def delete(self, key: str) -> bool:
                await deleting.wait()
                return await super().delete(key)

        async def loader() -> str:
            await loading.wait()
            return "loaded"

        cache = ResultCache(10_000, store=SlowDeleteStore(), persist=True, clock=clock)
        await cache.put("k", "old", ttl=60)

        invalidating = asyncio.create_task(cache.invalidate("k"))
        await asyncio.sleep(0.01)
        reloading = asyncio.create_task(cache.get_or_load("k", loader, 60))
        await asyncio.sleep(0.01)

        deleting.set()
        assert await invalidating is True
        await asyncio.sleep(0.01)

        # the loader now holds "k"; a writer arriving late must wait for it
        writing = asyncio.create_task(cache.put("k", "newer", ttl=60))
        await asyncio.sleep(0.01)
        assert not writing.done()

        loading.set()
        assert await reloading == ("loaded", False)
        await writing
        assert await cache.get("k") == "newer"
        assert len(cache._locks) == 0


class TestPersistence:
    async def test_write_through_and_restore(self, clock: FakeClock) -> None:
        store = MemoryStore()
        cache = ResultCache(10_000, store=store, persist=True, clock=clock)
        await cache.put("search:a:1", [{"title": "T"}], ttl=60)
        await cache.put("search:a:2", [{"title": "U"}], ttl=10)
        assert await store.list_keys_by_prefix(STORE_PREFIX) == [
            "cache:search:a:1",
            "cache:search:a:2",
        ]

        clock.advance(30)
        fresh = ResultCache(10_000, store=store, persist=True, clock=clock)
        assert await fresh.restore() == 1
        assert await fresh.get("search:a:1") == [{"title": "T"}]
        # expired entry dropped from the store as well
        assert await store.get("cache:search:a:2") is None

    async def test_corrupt_record_skipped(self, clock: FakeClock) -> None:
        store = MemoryStore()
        await store.put(STORE_PREFIX + "bad", b"not a pickle")
        cache = ResultCache(10_000, store=store, persist=True, clock=clock)
        assert await cache.restore() == 0
        assert await store.get(STORE_PREFIX + "bad") is None

    async def test_persist_disabled_ignores_store(self, clock: FakeClock) -> None:
        store = MemoryStore()
        cache = ResultCache(10_000, store=store, persist=False, clock=clock)
        await cache.put("k", [1], ttl=60)
        assert await store.list_keys_by_prefix(STORE_PREFIX) == []
        assert await cache.restore() == 0

    async def test_clear_removes_persisted_entries(self, clock: FakeClock) -> None:
        store = MemoryStore()
        cache = ResultCache(10_000, store=store, persist=True, clock=clock)
        await cache.put("k", [1], ttl=60)
        await cache.clear()
        assert len(cache) == 0
        assert await store.list_keys_by_prefix(STORE_PREFIX) == []


def test_invalid_budget() -> None:
    with pytest.raises(ValueError):
        ResultCache(0)
