"""Process-local key-value store (default backend, also used in tests)."""

from __future__ import annotations

import asyncio

import structlog

log = structlog.get_logger(__name__)


class MemoryStore:
    """Dict-backed store. Contents are lost on shutdown."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> MemoryStore:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._data.clear()

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        async with self._lock:
            self._data[key] = bytes(value)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def list_keys_by_prefix(self, prefix: str) -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
