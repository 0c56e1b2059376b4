"""archive-plugin loader: a zip archive carrying a Python entry module."""

from __future__ import annotations

import asyncio
import hashlib
import uuid
import zipfile
import zipimport
from pathlib import Path
from typing import Any, Mapping

import structlog

from vodhub.domain.entities import RuntimeKind, SiteDescriptor
from vodhub.domain.errors import PluginLoadError
from vodhub.infrastructure.http.invoker import ResilientInvoker
from vodhub.infrastructure.plugins.handle import Cleanup
from vodhub.infrastructure.plugins.loaders.base import (
    BaseLoader,
    InvokerFactory,
    exec_source,
    instantiate,
    read_payload,
    unique_module_name,
)

log = structlog.get_logger(__name__)

DEFAULT_ENTRY = "site"


def entry_module(descriptor: SiteDescriptor) -> str:
    if isinstance(descriptor.ext, Mapping):
        entry = descriptor.ext.get("entry")
        if isinstance(entry, str) and entry.strip():
            return entry.strip()
    return DEFAULT_ENTRY


class ArchiveLoader(BaseLoader):
    """Stores the archive in *work_dir* and imports its entry module.

    - The md5 ``checksum`` (``;md5;`` suffix in the config) is verified.
    - Code is read through ``zipimport.zipimporter`` and executed into a
      uniquely named module; neither ``sys.path`` nor ``sys.modules`` is
      touched. Other archive members are reachable through
      ``context.read_resource(name)``.
    - The stored archive is deleted when the handle is unloaded.
    """

    kind = RuntimeKind.ARCHIVE

    def __init__(self, invoker_factory: InvokerFactory, work_dir: Path) -> None:
        super().__init__(invoker_factory)
        self.work_dir = Path(work_dir)

    async def _instantiate(
        self,
        descriptor: SiteDescriptor,
        invoker: ResilientInvoker,
        cleanup: list[Cleanup],
    ) -> Any:
        payload = await read_payload(descriptor, invoker)

        if descriptor.checksum:
            digest = hashlib.md5(payload).hexdigest()  # noqa: S324
            if digest != descriptor.checksum.lower():
                raise PluginLoadError(
                    f"checksum mismatch: expected {descriptor.checksum}, got {digest}",
                    site=descriptor.key,
                )

        archive = await self._store(descriptor, payload)

        async def _remove() -> None:
            await asyncio.to_thread(archive.unlink, missing_ok=True)
            log.debug("plugin_archive_removed", site=descriptor.key, path=str(archive))

        cleanup.append(_remove)

        if not await asyncio.to_thread(zipfile.is_zipfile, archive):
            raise PluginLoadError("payload is not a zip archive", site=descriptor.key)

        entry = entry_module(descriptor)
        try:
            importer = zipimport.zipimporter(str(archive))
            code = importer.get_code(entry)
        except zipimport.ZipImportError as e:
            raise PluginLoadError(
                f"entry module {entry!r} not found in archive: {e}", site=descriptor.key
            ) from e
        except SyntaxError as e:
            raise PluginLoadError(
                f"SyntaxError in archive entry {entry!r}: {e}", site=descriptor.key
            ) from e

        origin = f"{archive}/{entry}"
        module = exec_source(code, unique_module_name(descriptor), origin, descriptor)
        module.__loader__ = importer

        def _read_resource(name: str) -> bytes:
            try:
                return importer.get_data(name)
            except OSError as e:
                raise FileNotFoundError(f"{name} not in archive of {descriptor.key}") from e

        return await instantiate(
            module, self._context(descriptor, invoker, _read_resource)
        )

    async def _store(self, descriptor: SiteDescriptor, payload: bytes) -> Path:
        safe = "".join(c if c.isalnum() else "_" for c in descriptor.key)
        target = self.work_dir / f"{safe}-{descriptor.fingerprint()}-{uuid.uuid4().hex[:8]}.zip"

        def _write() -> None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise PluginLoadError(
                f"cannot store archive in {self.work_dir}: {e}", site=descriptor.key
            ) from e
        return target
