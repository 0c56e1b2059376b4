"""Shared fixtures for integration tests.

These tests wire real components (stores, cache, registry, loaders,
invoker) together, with HTTP mocked via respx.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import respx

from vodhub.infrastructure.stores import DiskcacheStore


@pytest.fixture()
async def diskcache_store(tmp_path: Path) -> DiskcacheStore:
    """Real DiskcacheStore backed by tmp_path (auto-cleaned)."""
    store = DiskcacheStore(directory=tmp_path / "store", max_concurrent=5)
    async with store:
        yield store


@pytest.fixture()
def respx_mock() -> respx.MockRouter:
    """Explicit respx mock router for request interception."""
    with respx.mock(assert_all_called=False) as router:
        yield router
