"""Shared loading flow for all runtime kinds."""

from __future__ import annotations

import abc
import asyncio
import inspect
import traceback
import uuid
from pathlib import Path
from types import ModuleType
from typing import Any, Callable
from urllib.parse import unquote, urlsplit

import structlog

from vodhub.domain.entities import RuntimeKind, SiteDescriptor
from vodhub.domain.errors import InvokerError, PluginLoadError
from vodhub.domain.ports.invoker import InvokeRequest
from vodhub.infrastructure.http.invoker import ResilientInvoker
from vodhub.infrastructure.plugins.context import SiteContext
from vodhub.infrastructure.plugins.handle import (
    Cleanup,
    SitePlugin,
    probe_capabilities,
    release,
)

log = structlog.get_logger(__name__)

InvokerFactory = Callable[[SiteDescriptor], ResilientInvoker]


def unique_module_name(descriptor: SiteDescriptor) -> str:
    safe = "".join(c if c.isalnum() else "_" for c in descriptor.key)
    return f"vodhub_site_{safe}_{uuid.uuid4().hex[:8]}"


def local_path(location: str) -> Path | None:
    """Filesystem path for *location*, or None when it is a remote URL."""
    parts = urlsplit(location)
    if parts.scheme == "file":
        return Path(unquote(parts.path))
    if parts.scheme in ("http", "https"):
        return None
    if parts.scheme and len(parts.scheme) > 1:
        raise PluginLoadError(f"unsupported payload scheme: {location!r}")
    return Path(location).expanduser()


async def read_payload(descriptor: SiteDescriptor, invoker: ResilientInvoker) -> bytes:
    """Fetch the raw plugin payload (local file or through the site's invoker)."""
    location = descriptor.source_location
    path = local_path(location)
    if path is not None:
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise PluginLoadError(
                f"cannot read plugin payload {path}: {e}", site=descriptor.key
            ) from e
    try:
        response = await invoker.invoke(InvokeRequest(url=location))
    except InvokerError as e:
        raise PluginLoadError(
            f"cannot download plugin payload {location}: {e}", site=descriptor.key
        ) from e
    return response.content


def exec_source(
    code: Any, module_name: str, origin: str, descriptor: SiteDescriptor
) -> ModuleType:
    """Execute compiled *code* into a fresh module kept out of ``sys.modules``."""
    module = ModuleType(module_name)
    module.__file__ = origin
    try:
        exec(code, module.__dict__)  # noqa: S102
    except Exception as e:
        tb = traceback.format_exc()
        raise PluginLoadError(
            f"Error while importing {origin}:\n{tb}", site=descriptor.key
        ) from e
    return module


async def instantiate(module: ModuleType, context: SiteContext) -> Any:
    """Build the plugin object from ``create_plugin(context)`` or ``plugin``."""
    factory = getattr(module, "create_plugin", None)
    if callable(factory):
        try:
            impl = factory(context)
            if inspect.isawaitable(impl):
                impl = await impl
        except Exception as e:
            tb = traceback.format_exc()
            raise PluginLoadError(
                f"create_plugin() failed for {context.key}:\n{tb}", site=context.key
            ) from e
        if impl is None:
            raise PluginLoadError("create_plugin() returned None", site=context.key)
        return impl
    if hasattr(module, "plugin"):
        return module.plugin
    raise PluginLoadError(
        "Plugin must export 'create_plugin(context)' or a 'plugin' object",
        site=context.key,
    )


class BaseLoader(abc.ABC):
    """Template for the three loaders.

    Subclasses implement :meth:`_instantiate`; this class owns the per-site
    invoker, the capability probe, and release on every failure path.
    """

    kind: RuntimeKind

    def __init__(self, invoker_factory: InvokerFactory) -> None:
        self._invoker_factory = invoker_factory

    async def load(self, descriptor: SiteDescriptor) -> SitePlugin:
        if descriptor.runtime_kind is not self.kind:
            raise PluginLoadError(
                f"{type(self).__name__} cannot load {descriptor.runtime_kind.value}",
                site=descriptor.key,
            )

        invoker = self._invoker_factory(descriptor)
        cleanup: list[Cleanup] = []
        try:
            impl = await self._instantiate(descriptor, invoker, cleanup)
            probe_capabilities(impl, descriptor)
        except BaseException as e:
            await release(invoker, cleanup, site=descriptor.key)
            log.error(
                "plugin_load_failed",
                site=descriptor.key,
                kind=descriptor.runtime_kind.value,
                error_type=type(e).__name__,
                error_message=str(e).splitlines()[0] if str(e) else "",
            )
            raise

        log.info(
            "plugin_loaded",
            site=descriptor.key,
            kind=descriptor.runtime_kind.value,
            capabilities=sorted(c.value for c in descriptor.capabilities),
        )
        return SitePlugin(descriptor, impl, invoker=invoker, cleanup=cleanup)

    async def unload(self, handle: SitePlugin) -> None:
        await handle.aclose()
        log.info("plugin_unloaded", site=handle.key)

    @abc.abstractmethod
    async def _instantiate(
        self,
        descriptor: SiteDescriptor,
        invoker: ResilientInvoker,
        cleanup: list[Cleanup],
    ) -> Any:
        raise NotImplementedError

    @staticmethod
    def _context(
        descriptor: SiteDescriptor,
        invoker: ResilientInvoker,
        resource_reader: Callable[[str], bytes] | None = None,
    ) -> SiteContext:
        return SiteContext(
            descriptor=descriptor,
            invoker=invoker,
            _resource_reader=resource_reader,
        )
