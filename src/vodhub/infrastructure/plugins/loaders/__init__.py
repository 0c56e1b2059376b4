"""Plugin loaders, one per runtime kind, behind a closed mapping."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

import structlog

from vodhub.domain.entities import RuntimeKind, SiteDescriptor
from vodhub.domain.ports.plugin import PluginLoaderPort, SitePluginPort
from vodhub.infrastructure.config.schema import HttpConfig
from vodhub.infrastructure.http.invoker import ResilientInvoker

from .archive import ArchiveLoader
from .base import BaseLoader, InvokerFactory
from .interpreted import InterpretedLoader, RulePlugin
from .script import ScriptLoader

log = structlog.get_logger(__name__)


def site_invoker_factory(http: HttpConfig) -> InvokerFactory:
    """Each site gets its own session carrying the descriptor's headers."""

    def _factory(descriptor: SiteDescriptor) -> ResilientInvoker:
        return ResilientInvoker.from_config(
            http, headers=dict(descriptor.headers), name=descriptor.key
        )

    return _factory


class LoaderSet:
    """Closed mapping ``RuntimeKind -> loader``."""

    def __init__(self, loaders: Mapping[RuntimeKind, PluginLoaderPort]) -> None:
        missing = set(RuntimeKind) - set(loaders)
        if missing:
            raise ValueError(
                f"no loader for runtime kinds: {sorted(k.value for k in missing)}"
            )
        self._loaders = dict(loaders)

    @classmethod
    def default(cls, *, invoker_factory: InvokerFactory, work_dir: Path) -> LoaderSet:
        return cls(
            {
                RuntimeKind.ARCHIVE: ArchiveLoader(invoker_factory, work_dir),
                RuntimeKind.SCRIPT: ScriptLoader(invoker_factory),
                RuntimeKind.INTERPRETED: InterpretedLoader(invoker_factory),
            }
        )

    def for_kind(self, kind: RuntimeKind) -> PluginLoaderPort:
        return self._loaders[kind]

    async def load(self, descriptor: SiteDescriptor) -> SitePluginPort:
        return await self.for_kind(descriptor.runtime_kind).load(descriptor)

    async def unload(self, handle: SitePluginPort) -> None:
        await self.for_kind(handle.descriptor.runtime_kind).unload(handle)


__all__ = [
    "ArchiveLoader",
    "BaseLoader",
    "InterpretedLoader",
    "LoaderSet",
    "RulePlugin",
    "ScriptLoader",
    "site_invoker_factory",
]
