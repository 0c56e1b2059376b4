"""Diskcache store - SQLite-based persistence without daemon process."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
from diskcache import Cache as DiskCache

log = structlog.get_logger(__name__)


class DiskcacheStore:
    """Async wrapper for diskcache.Cache (sync-only library).

    - Uses `asyncio.to_thread` for I/O (no blocking of the event loop).
    - Semaphore prevents too many parallel disk writes (SQLite lock contention).
    - Opened lazily via `async with store:` or the first operation.

    Args:
        directory: SQLite DB directory.
        max_concurrent: Max parallel disk ops.
    """

    def __init__(self, directory: str | Path, max_concurrent: int = 10) -> None:
        self.directory = Path(directory)
        self._cache: DiskCache | None = None
        self._open_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> DiskcacheStore:
        await self._ensure_open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _ensure_open(self) -> DiskCache:
        async with self._open_lock:
            if self._cache is None:
                self._cache = await asyncio.to_thread(DiskCache, str(self.directory))
                log.info("diskcache_opened", path=str(self.directory))
            return self._cache

    async def aclose(self) -> None:
        if self._cache is not None:
            await asyncio.to_thread(self._cache.close)
            self._cache = None
            log.info("diskcache_closed", directory=str(self.directory))

    # --- KeyValueStorePort implementation ---
    async def get(self, key: str) -> bytes | None:
        cache = await self._ensure_open()
        async with self._semaphore:
            value = await asyncio.to_thread(cache.get, key, default=None)
        log.debug("store_get", key=key, hit=value is not None)
        return value

    async def put(self, key: str, value: bytes) -> None:
        cache = await self._ensure_open()
        async with self._semaphore:
            await asyncio.to_thread(cache.set, key, bytes(value))
        log.debug("store_put", key=key, size_bytes=len(value))

    async def delete(self, key: str) -> bool:
        cache = await self._ensure_open()
        async with self._semaphore:
            deleted = await asyncio.to_thread(cache.delete, key)
        log.debug("store_delete", key=key, deleted=deleted)
        return bool(deleted)

    async def list_keys_by_prefix(self, prefix: str) -> list[str]:
        cache = await self._ensure_open()

        def _scan() -> list[str]:
            return sorted(
                k for k in cache.iterkeys() if isinstance(k, str) and k.startswith(prefix)
            )

        async with self._semaphore:
            return await asyncio.to_thread(_scan)
