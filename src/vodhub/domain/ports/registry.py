"""Port for the site registry."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from vodhub.domain.entities import Capability, RegistryEntry, SiteDescriptor
from vodhub.domain.ports.plugin import SitePluginPort


@runtime_checkable
class SiteRegistryPort(Protocol):
    """Owner of every site's descriptor, plugin handle and health.

    The only component allowed to load or unload plugins.
    """

    async def register(self, descriptor: SiteDescriptor) -> RegistryEntry: ...
    async def unregister(self, key: str) -> bool: ...
    async def set_enabled(self, key: str, enabled: bool) -> RegistryEntry: ...
    def get(self, key: str) -> RegistryEntry | None: ...
    def list_by_capability(self, capability: Capability) -> list[RegistryEntry]: ...
    def keys(self) -> list[str]: ...
    async def acquire(self, key: str) -> SitePluginPort: ...
    async def record_success(self, key: str) -> None: ...
    async def record_failure(self, key: str, error: BaseException | str) -> None: ...
    async def reset_health(self, key: str) -> RegistryEntry: ...
    async def probe(self, key: str) -> RegistryEntry: ...
