"""Shared test fixtures for the vodhub test suite."""

from __future__ import annotations

import asyncio
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from vodhub.application.events import EventChannel
from vodhub.domain.entities import Capability, RuntimeKind, SiteDescriptor
from vodhub.domain.errors import PluginLoadError
from vodhub.infrastructure.cache import ResultCache
from vodhub.infrastructure.plugins.handle import SitePlugin
from vodhub.infrastructure.registry import SiteRegistry
from vodhub.infrastructure.stores import MemoryStore

ALL_CAPABILITIES = frozenset(Capability)


def make_descriptor(key: str = "a", **overrides: Any) -> SiteDescriptor:
    """Script-plugin descriptor with every capability unless overridden."""
    fields: dict[str, Any] = {
        "key": key,
        "name": key.upper(),
        "runtime_kind": RuntimeKind.SCRIPT,
        "source_location": f"/plugins/{key}.py",
        "capabilities": ALL_CAPABILITIES,
    }
    fields.update(overrides)
    return SiteDescriptor(**fields)


class FakeSite:
    """In-process plugin implementation with scripted results."""

    def __init__(
        self,
        results: list[Any] | None = None,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.results = results if results is not None else [{"title": "T"}]
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False

    async def _respond(self, name: str, *args: Any) -> Any:
        self.calls.append((name, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.results

    async def search(self, keyword: str, quick: bool = False) -> Any:
        return await self._respond("search", keyword, quick)

    async def list_category(self, category_id: str, page: int = 1) -> Any:
        return await self._respond("list_category", category_id, page)

    async def resolve_detail(self, id: str) -> Any:
        result = await self._respond("resolve_detail", id)
        return result[0] if isinstance(result, list) and result else result

    async def resolve_playable(self, id: str) -> Any:
        self.calls.append(("resolve_playable", (id,)))
        if self.error is not None:
            raise self.error
        return f"https://cdn.example.com/{id}.m3u8"

    async def aclose(self) -> None:
        self.closed = True


class FakeLoaders:
    """Loader set handing out ``FakeSite`` instances per site key."""

    def __init__(self, sites: dict[str, FakeSite] | None = None) -> None:
        self.sites: dict[str, FakeSite] = dict(sites or {})
        self.failing: set[str] = set()
        self.loaded: list[str] = []
        self.unloaded: list[str] = []

    async def load(self, descriptor: SiteDescriptor) -> SitePlugin:
        if descriptor.key in self.failing:
            raise PluginLoadError("payload broken", site=descriptor.key)
        impl = self.sites.setdefault(descriptor.key, FakeSite())
        self.loaded.append(descriptor.key)
        return SitePlugin(descriptor, impl)

    async def unload(self, handle: SitePlugin) -> None:
        self.unloaded.append(handle.key)
        await handle.aclose()


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def descriptor_factory() -> Callable[..., SiteDescriptor]:
    return make_descriptor


@pytest.fixture()
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture()
def fake_loaders() -> FakeLoaders:
    return FakeLoaders()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def registry(fake_loaders: FakeLoaders, events: EventChannel) -> SiteRegistry:
    return SiteRegistry(fake_loaders, events=events, degraded_after=2, failed_after=4)


@pytest.fixture()
def result_cache(clock: FakeClock) -> ResultCache:
    return ResultCache(1_000_000, clock=clock)


@pytest.fixture()
def mock_invoker() -> AsyncMock:
    """Mock InvokerPort."""
    invoker = AsyncMock()
    invoker.invoke = AsyncMock()
    invoker.aclose = AsyncMock()
    return invoker
