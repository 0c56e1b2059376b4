"""Tests for ConfigSourceBook: add/remove/activate, ordering, persistence."""

from __future__ import annotations

import pytest

from tests.conftest import FakeClock
from vodhub.application.config_sources import (
    STORE_PREFIX,
    ConfigSourceBook,
    validate_source_url,
)
from vodhub.domain.entities import SourceHealth, source_id
from vodhub.domain.errors import (
    ConfigValidationError,
    SourceExistsError,
    SourceNotFoundError,
)
from vodhub.infrastructure.stores import MemoryStore

A = "https://cfg.example.com/a.json"
B = "https://cfg.example.com/b.json"


class TestAdd:
    async def test_defaults(self, clock: FakeClock) -> None:
        book = ConfigSourceBook(clock=clock)
        source = await book.add(f"  {A} ")
        assert source.id == source_id(A)
        assert source.url == A
        assert source.name == A
        assert source.active is True
        assert source.priority == 1
        assert source.added_at == clock.now
        assert source.health is SourceHealth.UNKNOWN
        assert source.id in book

    async def test_priority_follows_highest_existing(self) -> None:
        book = ConfigSourceBook()
        await book.add(A, priority=7)
        assert (await book.add(B)).priority == 8

    async def test_duplicate_url_rejected(self) -> None:
        book = ConfigSourceBook()
        await book.add(A)
        with pytest.raises(SourceExistsError):
            await book.add(A, name="again")
        assert len(book) == 1

    @pytest.mark.parametrize(
        "url", ["", "   ", "ftp://cfg.example.com/a.json", "https:///a.json"]
    )
    def test_invalid_urls(self, url: str) -> None:
        with pytest.raises(ConfigValidationError):
            validate_source_url(url)

    @pytest.mark.parametrize(
        "url", [A, "file:///srv/sites.json", "/srv/sites.json", "C:\\cfg\\sites.json"]
    )
    def test_accepted_locations(self, url: str) -> None:
        assert validate_source_url(url) == url


class TestSelection:
    async def test_active_ordered_by_priority(self) -> None:
        book = ConfigSourceBook()
        a = await book.add(A, priority=3)
        b = await book.add(B, priority=1)
        assert [s.id for s in book.active()] == [b.id, a.id]
        assert book.primary() == b

    async def test_deactivated_source_skipped(self, clock: FakeClock) -> None:
        book = ConfigSourceBook(clock=clock)
        a = await book.add(A)
        b = await book.add(B)
        clock.advance(10)
        updated = await book.set_active(a.id, False)
        assert updated.updated_at == clock.now
        assert book.primary() == b
        assert len(book.sources()) == 2

    async def test_nothing_active(self) -> None:
        book = ConfigSourceBook()
        await book.add(A, active=False)
        assert book.primary() is None

    async def test_unknown_id(self) -> None:
        book = ConfigSourceBook()
        with pytest.raises(SourceNotFoundError):
            await book.set_active("nope", True)
        with pytest.raises(SourceNotFoundError):
            await book.remove("nope")


class TestPersistence:
    async def test_restore_round_trip(self, clock: FakeClock) -> None:
        store = MemoryStore()
        book = ConfigSourceBook(store, clock=clock)
        a = await book.add(A, name="Main")
        b = await book.add(B)
        await book.set_active(b.id, False)
        await book.record_check(a.id, SourceHealth.HEALTHY, response_ms=12.5)
        gone = await book.add("https://cfg.example.com/gone.json")
        await book.remove(gone.id)

        assert sorted(await store.list_keys_by_prefix(STORE_PREFIX)) == sorted(
            [STORE_PREFIX + a.id, STORE_PREFIX + b.id]
        )

        fresh = ConfigSourceBook(store, clock=clock)
        assert await fresh.restore() == 2
        assert fresh.get(a.id) == book.get(a.id)
        assert fresh.get(a.id).response_ms == 12.5
        assert fresh.get(b.id).active is False
        assert fresh.primary() == fresh.get(a.id)

    async def test_corrupt_record_skipped(self) -> None:
        store = MemoryStore()
        await store.put(STORE_PREFIX + "x", b"{not json")
        assert await ConfigSourceBook(store).restore() == 0

    async def test_without_store(self) -> None:
        book = ConfigSourceBook()
        await book.add(A)
        assert await book.restore() == 0
