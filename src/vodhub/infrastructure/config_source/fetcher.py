"""Config source fetcher: remote URL or local file -> document text."""

from __future__ import annotations

import asyncio
import codecs
from pathlib import Path
from urllib.parse import unquote, urlsplit

import structlog

from vodhub.domain.errors import (
    FormatError,
    HttpStatusError,
    NetworkError,
    RequestTimeoutError,
)
from vodhub.domain.ports.invoker import InvokeRequest, InvokerPort

log = structlog.get_logger(__name__)

_BINARY_TYPES = (
    "image/",
    "audio/",
    "video/",
    "application/octet-stream",
    "application/zip",
)


def decode_document(content: bytes, charset: str | None = None) -> str:
    """Decode a config body; raises ``FormatError`` for non-text payloads."""
    if b"\x00" in content:
        raise FormatError("config body contains NUL bytes (binary payload?)")
    if content.startswith(codecs.BOM_UTF8):
        content = content[len(codecs.BOM_UTF8) :]
        charset = "utf-8"
    last_error: UnicodeDecodeError | None = None
    for encoding in dict.fromkeys((charset or "utf-8", "utf-8")):
        try:
            return content.decode(encoding)
        except LookupError:
            continue
        except UnicodeDecodeError as exc:
            last_error = exc
    raise FormatError(f"config body is not decodable text: {last_error}") from last_error


def _local_path(location: str) -> Path | None:
    parts = urlsplit(location)
    if parts.scheme == "file":
        return Path(unquote(parts.path))
    if parts.scheme in ("http", "https"):
        return None
    # Windows drive letters parse as a one-letter scheme.
    if parts.scheme and len(parts.scheme) > 1:
        return None
    return Path(location).expanduser()


class ConfigFetcher:
    """Retrieves the site config document.

    Remote documents go through the injected invoker, which owns the
    retry/backoff policy; local paths and ``file://`` URLs are read in a
    worker thread. Never returns a partial document.
    """

    def __init__(self, invoker: InvokerPort) -> None:
        self._invoker = invoker

    async def fetch(self, url: str) -> str:
        """Return the document text.

        Raises:
            NetworkError: Source unreachable, timed out or answered an error status.
            FormatError: Body is not a text document.
        """
        path = _local_path(url)
        if path is not None:
            return await self._read_local(path)
        return await self._fetch_remote(url)

    async def _read_local(self, path: Path) -> str:
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise NetworkError(f"cannot read config file {path}: {exc}") from exc
        text = decode_document(content)
        log.info("config_fetched", source=str(path), size=len(content))
        return text

    async def _fetch_remote(self, url: str) -> str:
        try:
            response = await self._invoker.invoke(InvokeRequest(url=url))
        except RequestTimeoutError as exc:
            raise NetworkError(f"timed out fetching config from {url}") from exc
        except HttpStatusError as exc:
            raise NetworkError(f"config source answered HTTP {exc.code}: {url}") from exc

        content_type = str(response.headers.get("content-type", "")).lower()
        if content_type.startswith(_BINARY_TYPES):
            raise FormatError(f"config source returned {content_type!r}, expected text")

        text = decode_document(response.content, response.encoding)
        log.info("config_fetched", source=url, size=len(response.content))
        return text
