"""Tests for SiteRegistry: lifecycle, enable state, health and persistence."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import FakeLoaders, FakeSite, make_descriptor
from vodhub.application.events import EventChannel
from vodhub.domain.entities import Capability, RegistryChanged, SiteHealth
from vodhub.domain.errors import (
    PluginLoadError,
    SiteDisabledError,
    SiteNotFoundError,
)
from vodhub.infrastructure.registry import STORE_PREFIX, SiteRegistry
from vodhub.infrastructure.stores import MemoryStore


@pytest.fixture()
def changes(events: EventChannel) -> list[RegistryChanged]:
    seen: list[RegistryChanged] = []
    events.subscribe(seen.append, RegistryChanged)
    return seen


class TestRegister:
    async def test_new_entry_is_unloaded_and_unknown(
        self, registry: SiteRegistry, changes
    ) -> None:
        entry = await registry.register(make_descriptor("a"))
        assert entry.health is SiteHealth.UNKNOWN
        assert not entry.loaded
        assert "a" in registry
        assert changes == [RegistryChanged("a", "registered")]

    async def test_acquire_loads_once(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        await registry.register(make_descriptor("a"))
        first, second = await asyncio.gather(registry.acquire("a"), registry.acquire("a"))
        assert first is second
        assert fake_loaders.loaded == ["a"]
        assert registry.get("a").loaded

    async def test_same_payload_keeps_loaded_handle(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        await registry.register(make_descriptor("a"))
        handle = await registry.acquire("a")
        await registry.register(make_descriptor("a", name="Renamed"))
        assert registry.get("a").plugin is handle
        assert registry.get("a").descriptor.name == "Renamed"
        assert fake_loaders.unloaded == []

    async def test_changed_payload_swaps_then_unloads_old(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders, changes
    ) -> None:
        await registry.register(make_descriptor("a"))
        old = await registry.acquire("a")
        entry = await registry.register(make_descriptor("a", version="2"))
        assert entry.plugin is not old
        assert old.closed
        assert fake_loaders.loaded == ["a", "a"]
        assert fake_loaders.unloaded == ["a"]
        assert changes[-1].reason == "replaced"

    async def test_failed_replacement_keeps_old_handle(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        await registry.register(make_descriptor("a"))
        old = await registry.acquire("a")
        fake_loaders.failing.add("a")
        with pytest.raises(PluginLoadError):
            await registry.register(make_descriptor("a", version="2"))
        entry = registry.get("a")
        assert entry.plugin is old
        assert entry.descriptor.version is None
        assert not old.closed

    async def test_unregister_releases_handle(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders, changes
    ) -> None:
        await registry.register(make_descriptor("a"))
        handle = await registry.acquire("a")
        assert await registry.unregister("a") is True
        assert await registry.unregister("a") is False
        assert handle.closed
        assert "a" not in registry
        assert changes[-1] == RegistryChanged("a", "unregistered")


class TestEnableState:
    async def test_disable_unloads_and_blocks_acquire(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        await registry.register(make_descriptor("a"))
        handle = await registry.acquire("a")
        entry = await registry.set_enabled("a", False)
        assert not entry.enabled
        assert handle.closed
        with pytest.raises(SiteDisabledError):
            await registry.acquire("a")

    async def test_set_enabled_is_idempotent(self, registry: SiteRegistry, changes) -> None:
        await registry.register(make_descriptor("a"))
        await registry.set_enabled("a", False)
        await registry.set_enabled("a", False)
        assert [c.reason for c in changes] == ["registered", "disabled"]

    async def test_reenable_loads_again(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        await registry.register(make_descriptor("a"))
        await registry.acquire("a")
        await registry.set_enabled("a", False)
        await registry.set_enabled("a", True)
        await registry.acquire("a")
        assert fake_loaders.loaded == ["a", "a"]

    async def test_unknown_key(self, registry: SiteRegistry) -> None:
        with pytest.raises(SiteNotFoundError):
            await registry.set_enabled("nope", True)
        with pytest.raises(SiteNotFoundError):
            await registry.acquire("nope")


class TestCapabilityListing:
    async def test_filters_disabled_failed_and_capability(
        self, registry: SiteRegistry
    ) -> None:
        await registry.register(make_descriptor("a"))
        await registry.register(
            make_descriptor("b", capabilities=frozenset({Capability.DETAIL}))
        )
        await registry.register(make_descriptor("c", enabled=False))
        await registry.register(make_descriptor("d"))
        for _ in range(4):
            await registry.record_failure("d", "down")

        keys = [e.key for e in registry.list_by_capability(Capability.SEARCH)]
        assert keys == ["a"]
        assert [e.key for e in registry.list_by_capability(Capability.DETAIL)] == ["a", "b"]


class TestHealth:
    async def test_transitions(self, registry: SiteRegistry, changes) -> None:
        await registry.register(make_descriptor("a"))

        await registry.record_success("a")
        assert registry.get("a").health is SiteHealth.HEALTHY

        await registry.record_failure("a", "boom")
        assert registry.get("a").health is SiteHealth.HEALTHY
        await registry.record_failure("a", TimeoutError())
        entry = registry.get("a")
        assert entry.health is SiteHealth.DEGRADED
        assert entry.last_error == "TimeoutError"
        assert entry.consecutive_failures == 2

        await registry.record_failure("a", "boom")
        await registry.record_failure("a", "boom")
        assert registry.get("a").health is SiteHealth.FAILED

        await registry.record_success("a")
        entry = registry.get("a")
        assert entry.health is SiteHealth.HEALTHY
        assert entry.consecutive_failures == 0
        assert entry.last_error is None

        health_events = [c for c in changes if c.reason == "health"]
        assert len(health_events) == 4  # healthy, degraded, failed, healthy

    async def test_load_failure_marks_failed(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.failing.add("a")
        await registry.register(make_descriptor("a"))
        with pytest.raises(PluginLoadError):
            await registry.acquire("a")
        entry = registry.get("a")
        assert entry.health is SiteHealth.FAILED
        assert entry.last_error == "payload broken"

    async def test_reset(self, registry: SiteRegistry) -> None:
        await registry.register(make_descriptor("a"))
        for _ in range(4):
            await registry.record_failure("a", "x")
        entry = await registry.reset_health("a")
        assert entry.health is SiteHealth.UNKNOWN
        assert entry.consecutive_failures == 0

    async def test_unknown_key_outcomes_ignored(self, registry: SiteRegistry) -> None:
        await registry.record_success("ghost")
        await registry.record_failure("ghost", "x")
        assert "ghost" not in registry

    def test_thresholds_validated(self, fake_loaders: FakeLoaders) -> None:
        with pytest.raises(ValueError):
            SiteRegistry(fake_loaders, degraded_after=3, failed_after=3)


class TestProbe:
    async def test_probe_revives_failed_site(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.sites["a"] = FakeSite()
        await registry.register(make_descriptor("a"))
        for _ in range(4):
            await registry.record_failure("a", "x")

        entry = await registry.probe("a")
        assert entry.health is SiteHealth.HEALTHY
        assert fake_loaders.sites["a"].calls == [("search", ("test", True))]

    async def test_probe_records_invocation_failure(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.sites["a"] = FakeSite(error=RuntimeError("bad"))
        await registry.register(make_descriptor("a"))
        entry = await registry.probe("a")
        assert entry.consecutive_failures == 1
        assert "bad" in entry.last_error

    async def test_probe_timeout(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.sites["a"] = FakeSite(delay=1.0)
        await registry.register(make_descriptor("a"))
        entry = await registry.probe("a", timeout=0.01)
        assert entry.last_error == "probe timed out after 0.01s"

    async def test_probe_uses_category_listing_for_unsearchable_site(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.sites["a"] = FakeSite()
        await registry.register(
            make_descriptor("a", searchable=False, categories=("movies",))
        )
        await registry.probe("a")
        assert fake_loaders.sites["a"].calls == [("list_category", ("movies", 1))]

    async def test_probe_load_failure_counted_once(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.failing.add("a")
        await registry.register(make_descriptor("a"))
        entry = await registry.probe("a")
        assert entry.health is SiteHealth.FAILED
        assert entry.consecutive_failures == 1


class TestPersistence:
    async def test_restore_round_trip(self, fake_loaders: FakeLoaders) -> None:
        store = MemoryStore()
        first = SiteRegistry(fake_loaders, store=store)
        await first.register(make_descriptor("a", ext={"token": "t"}))
        await first.register(make_descriptor("b"))
        await first.set_enabled("b", False)
        await first.register(make_descriptor("gone"))
        await first.unregister("gone")

        assert await store.list_keys_by_prefix(STORE_PREFIX) == [
            "registry:site:a",
            "registry:site:b",
        ]

        second = SiteRegistry(FakeLoaders(), store=store)
        assert await second.restore() == 2
        assert second.get("a").descriptor == make_descriptor("a", ext={"token": "t"})
        assert second.get("b").enabled is False
        assert not second.get("a").loaded

    async def test_corrupt_record_skipped(self, fake_loaders: FakeLoaders) -> None:
        store = MemoryStore()
        await store.put(STORE_PREFIX + "x", b"{not json")
        registry = SiteRegistry(fake_loaders, store=store)
        assert await registry.restore() == 0


class TestShutdown:
    async def test_warm_up_and_aclose(
        self, registry: SiteRegistry, fake_loaders: FakeLoaders
    ) -> None:
        fake_loaders.failing.add("bad")
        for key in ("a", "b", "bad"):
            await registry.register(make_descriptor(key))
        await registry.register(make_descriptor("off", enabled=False))

        assert await registry.warm_up() == 2
        assert sorted(fake_loaders.loaded) == ["a", "b"]

        await registry.aclose()
        assert sorted(fake_loaders.unloaded) == ["a", "b"]
        assert len(registry) == 4
        assert all(not e.loaded for e in registry.entries())

    async def test_snapshot(self, registry: SiteRegistry) -> None:
        await registry.register(make_descriptor("a"))
        [row] = registry.snapshot()
        assert row["key"] == "a"
        assert row["health"] == "unknown"
        assert row["loaded"] is False
