"""Config source book: the set of site documents the host can load from.

Sources are persisted through the key-value store so that a restart keeps
the list and each source's active flag. The active source with the lowest
priority number is the one ``ConfigService`` loads by default.
"""

from __future__ import annotations

import dataclasses
import json
import time
from typing import Callable
from urllib.parse import urlsplit

import structlog

from vodhub.domain.entities import ConfigSource, SourceHealth, source_id
from vodhub.domain.errors import (
    ConfigValidationError,
    SourceExistsError,
    SourceNotFoundError,
    VodhubError,
)
from vodhub.domain.ports.store import KeyValueStorePort

log = structlog.get_logger(__name__)

STORE_PREFIX = "config:source:"

_SCHEMES = ("http", "https", "file")


def validate_source_url(url: str) -> str:
    """Return the stripped *url*, or raise ``ConfigValidationError``.

    Accepts http(s) and file URLs and plain local paths.
    """
    url = (url or "").strip()
    if not url:
        raise ConfigValidationError("config source url is empty")
    parts = urlsplit(url)
    # One-letter schemes are Windows drive letters.
    if len(parts.scheme) > 1 and parts.scheme not in _SCHEMES:
        raise ConfigValidationError(f"unsupported config source scheme {parts.scheme!r}")
    if parts.scheme in ("http", "https") and not parts.netloc:
        raise ConfigValidationError(f"config source url has no host: {url!r}")
    return url


class ConfigSourceBook:
    """In-memory list of config sources with write-through persistence.

    Args:
        store: Optional store; without one the book lives for the process only.
        clock: Wall-clock source for timestamps.
    """

    def __init__(
        self,
        store: KeyValueStorePort | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._sources: dict[str, ConfigSource] = {}

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, id: object) -> bool:
        return id in self._sources

    def get(self, id: str) -> ConfigSource:
        source = self._sources.get(id)
        if source is None:
            raise SourceNotFoundError(f"unknown config source {id!r}")
        return source

    def sources(self) -> list[ConfigSource]:
        """All sources, ordered by priority then insertion."""
        return sorted(self._sources.values(), key=lambda s: s.priority)

    def active(self) -> list[ConfigSource]:
        return [s for s in self.sources() if s.active]

    def primary(self) -> ConfigSource | None:
        """The active source loaded by default, if any."""
        active = self.active()
        return active[0] if active else None

    async def add(
        self,
        url: str,
        *,
        name: str | None = None,
        priority: int | None = None,
        active: bool = True,
    ) -> ConfigSource:
        """Register a new source.

        Raises:
            ConfigValidationError: *url* is empty or not a supported location.
            SourceExistsError: A source with the same url already exists.
        """
        url = validate_source_url(url)
        id = source_id(url)
        if id in self._sources:
            raise SourceExistsError(f"config source already registered: {url}")
        if priority is None:
            priority = max((s.priority for s in self._sources.values()), default=0) + 1
        now = self._clock()
        source = ConfigSource(
            id=id,
            name=(name or "").strip() or url,
            url=url,
            active=active,
            priority=priority,
            added_at=now,
            updated_at=now,
        )
        self._sources[id] = source
        await self._persist(source)
        log.info("config_source_added", source=id, url=url, priority=priority)
        return source

    async def remove(self, id: str) -> ConfigSource:
        source = self.get(id)
        del self._sources[id]
        await self._forget(id)
        log.info("config_source_removed", source=id, url=source.url)
        return source

    async def set_active(self, id: str, active: bool) -> ConfigSource:
        source = self.get(id)
        if source.active == active:
            return source
        source = dataclasses.replace(source, active=active, updated_at=self._clock())
        self._sources[id] = source
        await self._persist(source)
        log.info("config_source_active_changed", source=id, active=active)
        return source

    async def record_check(
        self,
        id: str,
        health: SourceHealth,
        *,
        response_ms: float | None = None,
        error: str | None = None,
    ) -> ConfigSource:
        source = dataclasses.replace(
            self.get(id),
            health=health,
            last_checked_at=self._clock(),
            response_ms=response_ms,
            last_error=error,
        )
        self._sources[id] = source
        await self._persist(source)
        return source

    async def restore(self) -> int:
        """Load persisted sources; corrupt records are skipped."""
        if self._store is None:
            return 0
        restored = 0
        for store_key in await self._store.list_keys_by_prefix(STORE_PREFIX):
            raw = await self._store.get(store_key)
            if raw is None:
                continue
            try:
                source = ConfigSource.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                log.warning("config_source_restore_corrupt", key=store_key, error=str(e))
                continue
            self._sources[source.id] = source
            restored += 1
        log.info("config_sources_restored", sources=restored)
        return restored

    async def _persist(self, source: ConfigSource) -> None:
        if self._store is None:
            return
        try:
            payload = json.dumps(source.to_dict()).encode("utf-8")
            await self._store.put(STORE_PREFIX + source.id, payload)
        except (VodhubError, OSError) as e:
            log.warning("config_source_persist_failed", source=source.id, error=str(e))

    async def _forget(self, id: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.delete(STORE_PREFIX + id)
        except (VodhubError, OSError) as e:
            log.warning("config_source_persist_failed", source=id, error=str(e))
