"""Port for the key-value persistence collaborator."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStorePort(Protocol):
    """Async byte store with prefix listing.

    Implementations:
      - MemoryStore (process-local dict)
      - DiskcacheStore (SQLite-based, no daemon)
      - RedisStore (redis.asyncio)
    """

    async def get(self, key: str) -> bytes | None:
        """Return stored bytes, or None when the key is absent."""
        ...

    async def put(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> bool:
        """Delete key. True = deleted, False = did not exist."""
        ...

    async def list_keys_by_prefix(self, prefix: str) -> list[str]: ...

    async def aclose(self) -> None: ...
