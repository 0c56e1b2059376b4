"""Ports for loaded site plugins and the loaders that produce them."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from vodhub.domain.entities import (
    MediaDetail,
    MediaRecord,
    PlayableSource,
    RuntimeKind,
    SiteDescriptor,
)


@runtime_checkable
class SitePluginPort(Protocol):
    """Uniform post-load surface, whatever the runtime kind.

    Handles are owned by the registry entry that created them.
    """

    descriptor: SiteDescriptor

    @property
    def key(self) -> str: ...

    async def search(self, keyword: str, *, quick: bool = False) -> list[MediaRecord]: ...

    async def list_category(
        self, category_id: str, page: int = 1
    ) -> list[MediaRecord]: ...

    async def resolve_detail(self, id: str) -> MediaDetail: ...

    async def resolve_playable(self, id: str) -> PlayableSource: ...

    async def aclose(self) -> None:
        """Release the handle's resources (session, extracted payloads)."""
        ...


class PluginLoaderPort(Protocol):
    """Turns a descriptor into a loaded, capability-probed handle."""

    kind: RuntimeKind

    async def load(self, descriptor: SiteDescriptor) -> SitePluginPort:
        """Raises ``PluginLoadError`` or ``UnsupportedCapabilityError``."""
        ...

    async def unload(self, handle: SitePluginPort) -> None: ...
