"""In-memory result cache with TTL, LRU eviction and a byte budget."""

from __future__ import annotations

import hashlib
import json
import pickle
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Mapping

import structlog

from vodhub.domain.entities import CacheEntry
from vodhub.domain.ports.store import KeyValueStorePort
from vodhub.domain.errors import VodhubError
from vodhub.infrastructure.concurrency import KeyedLocks

log = structlog.get_logger(__name__)

STORE_PREFIX = "cache:"

# Params whose values are free-text user input
_KEYWORD_PARAMS = frozenset({"keyword", "q", "query"})


def _normalize_param(name: str, value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if name in _KEYWORD_PARAMS:
            value = " ".join(value.lower().split())
    return value


def measure(payload: Any) -> int:
    """Approximate payload size in bytes (JSON length, pickle as fallback)."""
    try:
        return len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError):
        return len(pickle.dumps(payload))


class ResultCache:
    """Memoizes config documents and per-site query results.

    - No entry is served past ``created_at + ttl`` (lazy expiry on read).
    - Total ``size_bytes`` never exceeds *max_bytes*; a ``put`` that would
      overflow evicts least-recently-used entries until the new one fits.
      An entry larger than the whole budget is not stored.
    - Writes are serialized per key; reads never wait on a lock.
    - With a *store* and ``persist=True`` every entry is written through
      under ``cache:<key>`` and :meth:`restore` rebuilds the index.

    Args:
        max_bytes: Size budget.
        store: Optional key-value store for write-through persistence.
        persist: Enable write-through (ignored without a store).
        clock: Wall-clock source (seconds); injectable for tests.
    """

    def __init__(
        self,
        max_bytes: int,
        *,
        store: KeyValueStorePort | None = None,
        persist: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        self.max_bytes = max_bytes
        self._store = store if persist else None
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._locks = KeyedLocks()
        self._total = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # --- keys ---
    @staticmethod
    def fingerprint(site: str, operation: str, params: Mapping[str, Any]) -> str:
        """Deterministic query key: site + operation + normalized params."""
        normalized = {
            k: _normalize_param(k, v)
            for k, v in sorted(params.items())
            if v is not None
        }
        raw = json.dumps(
            [site, operation, normalized], sort_keys=True, ensure_ascii=False, default=str
        )
        return f"{operation}:{site}:{hashlib.sha256(raw.encode()).hexdigest()[:16]}"

    # --- reads ---
    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.expired(self._clock()):
            self._drop(key)
            self._misses += 1
            log.debug("cache_expired", key=key)
            if self._store is not None:
                await self._store_delete(key)
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.payload

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.expired(self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size_bytes(self) -> int:
        return self._total

    # --- writes ---
    async def put(self, key: str, payload: Any, ttl: float) -> None:
        async with self._locks.hold(key):
            await self._put_locked(key, payload, ttl)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float,
    ) -> tuple[Any, bool]:
        """Return ``(payload, cache_hit)``.

        Concurrent misses on the same key run *loader* once; loader errors
        propagate and nothing is stored.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached, True

        async with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is not None and not entry.expired(self._clock()):
                self._entries.move_to_end(key)
                self._hits += 1
                return entry.payload, True
            payload = await loader()
            await self._put_locked(key, payload, ttl)
            return payload, False

    async def invalidate(self, key: str) -> bool:
        async with self._locks.hold(key):
            existed = self._drop(key)
            if self._store is not None:
                await self._store_delete(key)
        return existed

    async def clear(self) -> None:
        keys = list(self._entries)
        self._entries.clear()
        self._total = 0
        if self._store is not None:
            persisted = await self._store.list_keys_by_prefix(STORE_PREFIX)
            for store_key in persisted:
                await self._store.delete(store_key)
        log.info("cache_cleared", entries=len(keys))

    async def _put_locked(self, key: str, payload: Any, ttl: float) -> None:
        if ttl <= 0 or payload is None:
            return

        size = measure(payload)
        if size > self.max_bytes:
            self._drop(key)
            log.warning(
                "cache_entry_too_large", key=key, size_bytes=size, budget=self.max_bytes
            )
            return

        self._drop(key)
        evicted: list[str] = []
        while self._entries and self._total + size > self.max_bytes:
            lru_key, _ = next(iter(self._entries.items()))
            self._drop(lru_key)
            self._evictions += 1
            evicted.append(lru_key)

        entry = CacheEntry(
            key=key,
            payload=payload,
            created_at=self._clock(),
            ttl=float(ttl),
            size_bytes=size,
        )
        self._entries[key] = entry
        self._total += size

        if evicted:
            log.debug("cache_evicted", keys=evicted, total_bytes=self._total)

        if self._store is not None:
            for old in evicted:
                await self._store_delete(old)
            await self._store_put(entry)

    def _drop(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total -= entry.size_bytes
        return True

    # --- persistence ---
    async def restore(self) -> int:
        """Reload persisted entries; expired ones are removed from the store."""
        if self._store is None:
            return 0

        now = self._clock()
        records: list[CacheEntry] = []
        for store_key in await self._store.list_keys_by_prefix(STORE_PREFIX):
            raw = await self._store.get(store_key)
            if raw is None:
                continue
            try:
                data = pickle.loads(raw)
                entry = CacheEntry(
                    key=store_key[len(STORE_PREFIX) :],
                    payload=data["payload"],
                    created_at=float(data["created_at"]),
                    ttl=float(data["ttl"]),
                    size_bytes=int(data["size_bytes"]),
                )
            except (pickle.PickleError, KeyError, TypeError, ValueError, EOFError) as e:
                log.warning("cache_restore_corrupt", key=store_key, error=str(e))
                await self._store.delete(store_key)
                continue
            if entry.expired(now):
                await self._store.delete(store_key)
                continue
            records.append(entry)

        # Oldest first so the LRU order approximates insertion order.
        restored = 0
        for entry in sorted(records, key=lambda e: e.created_at):
            if entry.size_bytes > self.max_bytes:
                continue
            while self._entries and self._total + entry.size_bytes > self.max_bytes:
                lru_key, _ = next(iter(self._entries.items()))
                self._drop(lru_key)
                self._evictions += 1
            self._drop(entry.key)
            self._entries[entry.key] = entry
            self._total += entry.size_bytes
            restored += 1

        log.info("cache_restored", entries=restored, total_bytes=self._total)
        return restored

    async def _store_put(self, entry: CacheEntry) -> None:
        assert self._store is not None
        try:
            packed = pickle.dumps(
                {
                    "payload": entry.payload,
                    "created_at": entry.created_at,
                    "ttl": entry.ttl,
                    "size_bytes": entry.size_bytes,
                }
            )
        except (pickle.PickleError, TypeError, AttributeError) as e:
            log.warning("cache_persist_serialize_error", key=entry.key, error=str(e))
            return
        try:
            await self._store.put(STORE_PREFIX + entry.key, packed)
        except (VodhubError, OSError) as e:
            log.warning("cache_persist_error", key=entry.key, error=str(e))

    async def _store_delete(self, key: str) -> None:
        assert self._store is not None
        try:
            await self._store.delete(STORE_PREFIX + key)
        except (VodhubError, OSError) as e:
            log.warning("cache_persist_delete_error", key=key, error=str(e))

    # --- introspection ---
    def stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "size_bytes": self._total,
            "max_bytes": self.max_bytes,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "persistent": self._store is not None,
        }
