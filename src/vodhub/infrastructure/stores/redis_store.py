"""Redis store - async persistence via redis.asyncio."""

from __future__ import annotations

import asyncio
import re

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from vodhub.domain.errors import NetworkError

log = structlog.get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class RedisStore:
    """Async Redis store with a semaphore bounding parallel operations.

    Values are stored as raw bytes; callers own serialization.

    Args:
        url: Redis URL (e.g. `redis://localhost:6379/0`).
        max_concurrent: Max parallel Redis ops.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        max_concurrent: int = 50,
        *,
        client: Redis | None = None,
    ) -> None:
        self.url = url
        self._client: Redis | None = client
        self._open_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> RedisStore:
        await self._ensure_open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _ensure_open(self) -> Redis:
        async with self._open_lock:
            if self._client is None:
                client = Redis.from_url(self.url, decode_responses=False)
                try:
                    await client.ping()
                except RedisError as e:
                    log.error("redis_connection_failed", url=self.url, error=str(e))
                    await client.aclose()
                    raise NetworkError(f"redis unreachable at {self.url}: {e}") from e
                self._client = client
                log.info("redis_connected", url=self.url)
            return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            log.info("redis_closed")

    # --- KeyValueStorePort implementation ---
    async def get(self, key: str) -> bytes | None:
        client = await self._ensure_open()
        async with self._semaphore:
            try:
                return await client.get(key)
            except RedisError as e:
                raise NetworkError(f"redis GET {key!r} failed: {e}") from e

    async def put(self, key: str, value: bytes) -> None:
        client = await self._ensure_open()
        async with self._semaphore:
            try:
                await client.set(key, bytes(value))
            except RedisError as e:
                raise NetworkError(f"redis SET {key!r} failed: {e}") from e

    async def delete(self, key: str) -> bool:
        client = await self._ensure_open()
        async with self._semaphore:
            try:
                return bool(await client.delete(key))
            except RedisError as e:
                raise NetworkError(f"redis DEL {key!r} failed: {e}") from e

    async def list_keys_by_prefix(self, prefix: str) -> list[str]:
        client = await self._ensure_open()
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        keys: list[str] = []
        async with self._semaphore:
            try:
                async for raw in client.scan_iter(match=pattern):
                    keys.append(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
            except RedisError as e:
                raise NetworkError(f"redis SCAN {prefix!r} failed: {e}") from e
        return sorted(keys)
