"""Store factory - builds the key-value store selected by config."""

from __future__ import annotations

from pathlib import Path

import structlog

from vodhub.domain.ports.store import KeyValueStorePort
from vodhub.infrastructure.config.schema import StoreBackend
from vodhub.infrastructure.stores.diskcache_store import DiskcacheStore
from vodhub.infrastructure.stores.memory import MemoryStore
from vodhub.infrastructure.stores.redis_store import RedisStore

log = structlog.get_logger(__name__)


def create_store(
    backend: StoreBackend = "memory",
    *,
    directory: str | Path = "./.cache/vodhub",
    redis_url: str = "redis://localhost:6379/0",
    max_concurrent: int = 10,
) -> KeyValueStorePort:
    """Create the store for *backend*.

    Raises:
        ValueError: If `backend` is unknown.
    """
    if backend == "memory":
        log.info("store_factory_create", backend=backend)
        return MemoryStore()
    if backend == "diskcache":
        log.info("store_factory_create", backend=backend, directory=str(directory))
        return DiskcacheStore(directory=directory, max_concurrent=max_concurrent)
    if backend == "redis":
        log.info("store_factory_create", backend=backend, url=redis_url)
        return RedisStore(url=redis_url, max_concurrent=max(max_concurrent, 50))
    raise ValueError(
        f"Unknown store backend: {backend!r}. Must be 'memory', 'diskcache' or 'redis'."
    )
