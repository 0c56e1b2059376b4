"""Site registry: descriptors, plugin handles, enable state and health.

Health follows consecutive outcomes, similar to a circuit breaker:

- **unknown** -> **healthy** on first success.
- ``degraded_after`` consecutive failures -> **degraded** (still used,
  ranked after healthy sites).
- ``failed_after`` consecutive failures -> **failed** (excluded from
  aggregation until a successful probe or a manual reset).
- Any success -> **healthy**.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import time
from typing import Any, Callable, Protocol

import structlog

from vodhub.domain.entities import (
    Capability,
    RegistryChanged,
    RegistryEntry,
    SiteDescriptor,
    SiteHealth,
)
from vodhub.domain.errors import (
    PluginError,
    SiteDisabledError,
    SiteNotFoundError,
    VodhubError,
)
from vodhub.domain.ports.events import EventPublisherPort
from vodhub.domain.ports.plugin import SitePluginPort
from vodhub.domain.ports.store import KeyValueStorePort
from vodhub.infrastructure.concurrency import KeyedLocks

log = structlog.get_logger(__name__)

STORE_PREFIX = "registry:site:"
DEFAULT_PROBE_TIMEOUT = 15.0


class _Loaders(Protocol):
    async def load(self, descriptor: SiteDescriptor) -> SitePluginPort: ...
    async def unload(self, handle: SitePluginPort) -> None: ...


class SiteRegistry:
    """Owns every site's entry; the only component that loads or unloads plugins.

    Entries are frozen snapshots replaced wholesale, so readers see either
    the old or the new entry. Mutations of one key (load, replace, unload,
    health updates) are serialized by that key's ``asyncio.Lock``; different
    keys never contend.

    Args:
        loaders: Runtime-kind dispatch (``LoaderSet``).
        events: Channel receiving ``RegistryChanged`` notifications.
        store: Optional key-value store for descriptor persistence.
        degraded_after: Consecutive failures before *degraded*.
        failed_after: Consecutive failures before *failed*.
        probe_keyword: Keyword used by :meth:`probe` for search sites.
        clock: Wall-clock source for ``last_*_at`` timestamps.
    """

    def __init__(
        self,
        loaders: _Loaders,
        *,
        events: EventPublisherPort | None = None,
        store: KeyValueStorePort | None = None,
        degraded_after: int = 2,
        failed_after: int = 5,
        probe_keyword: str = "test",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if degraded_after < 1 or failed_after <= degraded_after:
            raise ValueError("require 1 <= degraded_after < failed_after")
        self._loaders = loaders
        self._events = events
        self._store = store
        self._degraded_after = degraded_after
        self._failed_after = failed_after
        self._probe_keyword = probe_keyword
        self._clock = clock
        self._entries: dict[str, RegistryEntry] = {}
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, key: str) -> RegistryEntry | None:
        return self._entries.get(key)

    def keys(self) -> list[str]:
        return list(self._entries)

    def entries(self) -> list[RegistryEntry]:
        """All entries in registration order."""
        return list(self._entries.values())

    def list_by_capability(self, capability: Capability) -> list[RegistryEntry]:
        """Enabled, non-failed entries declaring *capability*."""
        return [
            entry
            for entry in self._entries.values()
            if entry.enabled
            and entry.health is not SiteHealth.FAILED
            and entry.descriptor.supports(capability)
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def register(self, descriptor: SiteDescriptor) -> RegistryEntry:
        """Add or replace the entry for ``descriptor.key``.

        When a loaded handle exists and the descriptor's fingerprint changed,
        the new plugin is loaded first and the old handle is unloaded only
        after the swap. If the new load fails, the old entry stays active
        and the load error propagates.
        """
        key = descriptor.key
        async with self._locks.hold(key):
            current = self._entries.get(key)
            old_plugin: SitePluginPort | None = None

            if current is None:
                entry = RegistryEntry(descriptor=descriptor)
                reason = "registered"
            elif current.plugin is not None:
                fingerprint = descriptor.fingerprint()
                if fingerprint != current.loaded_fingerprint and descriptor.enabled:
                    new_plugin = await self._loaders.load(descriptor)
                    entry = RegistryEntry(
                        descriptor=descriptor,
                        plugin=new_plugin,
                        loaded_fingerprint=fingerprint,
                    )
                    old_plugin = current.plugin
                    reason = "replaced"
                elif not descriptor.enabled:
                    entry = dataclasses.replace(
                        current, descriptor=descriptor, plugin=None, loaded_fingerprint=None
                    )
                    old_plugin = current.plugin
                    reason = "disabled"
                else:
                    entry = dataclasses.replace(current, descriptor=descriptor)
                    reason = "updated"
            elif descriptor.fingerprint() != current.descriptor.fingerprint():
                # New payload: give it a fresh health record.
                entry = RegistryEntry(descriptor=descriptor)
                reason = "replaced"
            else:
                entry = dataclasses.replace(current, descriptor=descriptor)
                reason = "updated"

            self._entries[key] = entry
            if old_plugin is not None:
                await self._unload(old_plugin)

        log.info(
            "site_registered",
            site=key,
            kind=descriptor.runtime_kind.value,
            reason=reason,
            enabled=descriptor.enabled,
        )
        await self._persist(descriptor)
        await self._publish(key, reason)
        return entry

    async def unregister(self, key: str) -> bool:
        async with self._locks.hold(key):
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            if entry.plugin is not None:
                await self._unload(entry.plugin)

        log.info("site_unregistered", site=key)
        await self._forget(key)
        await self._publish(key, "unregistered")
        return True

    async def set_enabled(self, key: str, enabled: bool) -> RegistryEntry:
        """Enable/disable *key*; idempotent. Disabling unloads the handle."""
        async with self._locks.hold(key):
            entry = self._require(key)
            if entry.enabled == enabled:
                return entry
            descriptor = dataclasses.replace(entry.descriptor, enabled=enabled)
            old_plugin = entry.plugin if not enabled else None
            entry = dataclasses.replace(
                entry,
                descriptor=descriptor,
                plugin=None if not enabled else entry.plugin,
                loaded_fingerprint=None if not enabled else entry.loaded_fingerprint,
            )
            self._entries[key] = entry
            if old_plugin is not None:
                await self._unload(old_plugin)

        reason = "enabled" if enabled else "disabled"
        log.info("site_enabled_changed", site=key, enabled=enabled)
        await self._persist(descriptor)
        await self._publish(key, reason)
        return entry

    async def acquire(self, key: str) -> SitePluginPort:
        """Return the active handle, loading it on first use.

        Raises:
            SiteNotFoundError: Unknown key.
            SiteDisabledError: Site is disabled.
            PluginLoadError / UnsupportedCapabilityError: Load failed; the
                entry is marked *failed* with ``last_error``.
        """
        entry = self._require(key)
        if not entry.enabled:
            raise SiteDisabledError(f"site {key!r} is disabled")
        if entry.plugin is not None:
            return entry.plugin

        async with self._locks.hold(key):
            entry = self._require(key)
            if not entry.enabled:
                raise SiteDisabledError(f"site {key!r} is disabled")
            if entry.plugin is not None:
                return entry.plugin

            try:
                plugin = await self._loaders.load(entry.descriptor)
            except PluginError as e:
                self._entries[key] = dataclasses.replace(
                    entry,
                    health=SiteHealth.FAILED,
                    last_error=str(e).splitlines()[0] if str(e) else type(e).__name__,
                    consecutive_failures=entry.consecutive_failures + 1,
                    last_failure_at=self._clock(),
                )
                log.warning("site_load_failed", site=key, error=str(e).splitlines()[0])
                await self._publish(key, "load_failed")
                raise

            self._entries[key] = dataclasses.replace(
                entry, plugin=plugin, loaded_fingerprint=entry.descriptor.fingerprint()
            )
        await self._publish(key, "loaded")
        return plugin

    async def warm_up(self) -> int:
        """Load every enabled entry concurrently; returns how many are loaded."""

        async def _warm(key: str) -> bool:
            try:
                await self.acquire(key)
            except VodhubError as e:
                log.warning("site_warm_up_failed", site=key, error=str(e).splitlines()[0])
                return False
            return True

        keys = [e.key for e in self._entries.values() if e.enabled and not e.loaded]
        results = await asyncio.gather(*(_warm(k) for k in keys))
        loaded = sum(results)
        log.info("registry_warmed_up", loaded=loaded, failed=len(keys) - loaded)
        return loaded

    async def aclose(self) -> None:
        """Unload every handle; entries stay registered."""
        for key in list(self._entries):
            async with self._locks.hold(key):
                entry = self._entries.get(key)
                if entry is None or entry.plugin is None:
                    continue
                self._entries[key] = dataclasses.replace(
                    entry, plugin=None, loaded_fingerprint=None
                )
                await self._unload(entry.plugin)
        log.info("registry_closed", sites=len(self._entries))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def record_success(self, key: str) -> None:
        async with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return
            previous = entry.health
            self._entries[key] = dataclasses.replace(
                entry,
                health=SiteHealth.HEALTHY,
                last_error=None,
                consecutive_failures=0,
                last_success_at=self._clock(),
            )
        if previous is not SiteHealth.HEALTHY:
            log.info("site_health_changed", site=key, health="healthy", previous=previous.value)
            await self._publish(key, "health")

    async def record_failure(self, key: str, error: BaseException | str) -> None:
        message = error if isinstance(error, str) else (str(error) or type(error).__name__)
        async with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return
            failures = entry.consecutive_failures + 1
            health = entry.health
            if failures >= self._failed_after:
                health = SiteHealth.FAILED
            elif failures >= self._degraded_after:
                health = SiteHealth.DEGRADED
            previous = entry.health
            self._entries[key] = dataclasses.replace(
                entry,
                health=health,
                last_error=message.splitlines()[0] if message else message,
                consecutive_failures=failures,
                last_failure_at=self._clock(),
            )
        if health is not previous:
            log.warning(
                "site_health_changed",
                site=key,
                health=health.value,
                previous=previous.value,
                failures=failures,
                error=message,
            )
            await self._publish(key, "health")

    async def reset_health(self, key: str) -> RegistryEntry:
        async with self._locks.hold(key):
            entry = self._require(key)
            entry = dataclasses.replace(
                entry,
                health=SiteHealth.UNKNOWN,
                last_error=None,
                consecutive_failures=0,
            )
            self._entries[key] = entry
        log.info("site_health_reset", site=key)
        await self._publish(key, "health_reset")
        return entry

    async def probe(self, key: str, *, timeout: float | None = None) -> RegistryEntry:
        """Run the site's cheapest capability and record the outcome.

        Works on *failed* sites too; this is how they come back. Load and
        invocation errors are recorded, not raised.
        """
        entry = self._require(key)
        if not entry.enabled:
            raise SiteDisabledError(f"site {key!r} is disabled")
        descriptor = entry.descriptor
        limit = timeout or descriptor.timeout or DEFAULT_PROBE_TIMEOUT

        try:
            plugin = await self.acquire(key)
            await asyncio.wait_for(self._probe_call(plugin, descriptor), timeout=limit)
        except asyncio.TimeoutError:
            await self.record_failure(key, f"probe timed out after {limit:g}s")
        except PluginError as e:
            if self._require(key).plugin is not None:
                await self.record_failure(key, e)
        except VodhubError as e:
            await self.record_failure(key, e)
        else:
            await self.record_success(key)

        result = self._require(key)
        log.info("site_probed", site=key, health=result.health.value)
        return result

    async def _probe_call(self, plugin: SitePluginPort, descriptor: SiteDescriptor) -> Any:
        if descriptor.supports(Capability.SEARCH) and descriptor.searchable:
            return await plugin.search(self._probe_keyword, quick=True)
        if descriptor.supports(Capability.CATEGORY_LIST):
            category = descriptor.categories[0] if descriptor.categories else ""
            return await plugin.list_category(category, 1)
        # detail/play need an id; a successful load is the best signal.
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def restore(self) -> int:
        """Re-register persisted descriptors (without loading them)."""
        if self._store is None:
            return 0
        restored = 0
        for store_key in await self._store.list_keys_by_prefix(STORE_PREFIX):
            raw = await self._store.get(store_key)
            if raw is None:
                continue
            try:
                descriptor = SiteDescriptor.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                log.warning("registry_restore_corrupt", key=store_key, error=str(e))
                continue
            await self.register(descriptor)
            restored += 1
        log.info("registry_restored", sites=restored)
        return restored

    async def _persist(self, descriptor: SiteDescriptor) -> None:
        if self._store is None:
            return
        try:
            payload = json.dumps(descriptor.to_dict(), default=str).encode("utf-8")
            await self._store.put(STORE_PREFIX + descriptor.key, payload)
        except (VodhubError, OSError) as e:
            log.warning("registry_persist_failed", site=descriptor.key, error=str(e))

    async def _forget(self, key: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.delete(STORE_PREFIX + key)
        except (VodhubError, OSError) as e:
            log.warning("registry_persist_failed", site=key, error=str(e))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, key: str) -> RegistryEntry:
        entry = self._entries.get(key)
        if entry is None:
            raise SiteNotFoundError(f"unknown site {key!r}")
        return entry

    async def _unload(self, plugin: SitePluginPort) -> None:
        try:
            await self._loaders.unload(plugin)
        except (VodhubError, OSError) as e:
            log.warning("site_unload_failed", site=plugin.key, error=str(e))

    async def _publish(self, key: str, reason: str) -> None:
        if self._events is not None:
            await self._events.publish(RegistryChanged(key=key, reason=reason))

    def snapshot(self) -> list[dict[str, Any]]:
        """Diagnostic view of all entries."""
        return [entry.to_dict() for entry in self._entries.values()]
