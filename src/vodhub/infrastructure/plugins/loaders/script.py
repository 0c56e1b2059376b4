"""script-plugin loader: a single Python source module."""

from __future__ import annotations

from typing import Any

from vodhub.domain.entities import RuntimeKind, SiteDescriptor
from vodhub.domain.errors import PluginLoadError
from vodhub.infrastructure.http.invoker import ResilientInvoker
from vodhub.infrastructure.plugins.handle import Cleanup
from vodhub.infrastructure.plugins.loaders.base import (
    BaseLoader,
    exec_source,
    instantiate,
    read_payload,
    unique_module_name,
)


class ScriptLoader(BaseLoader):
    """Fetches Python source text and executes it into a fresh module.

    The module gets a unique name and is never registered in
    ``sys.modules``, so two sites shipping the same file name stay apart.
    """

    kind = RuntimeKind.SCRIPT

    async def _instantiate(
        self,
        descriptor: SiteDescriptor,
        invoker: ResilientInvoker,
        cleanup: list[Cleanup],
    ) -> Any:
        payload = await read_payload(descriptor, invoker)
        try:
            source = payload.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise PluginLoadError(
                f"script payload is not UTF-8 text: {e}", site=descriptor.key
            ) from e

        origin = descriptor.source_location
        try:
            code = compile(source, origin, "exec")
        except SyntaxError as e:
            raise PluginLoadError(
                f"SyntaxError while compiling {origin}: {e}", site=descriptor.key
            ) from e

        module = exec_source(code, unique_module_name(descriptor), origin, descriptor)
        return await instantiate(module, self._context(descriptor, invoker))
