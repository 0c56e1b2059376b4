"""Uniform handle around a loaded plugin implementation."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Sequence

import structlog

from vodhub.domain.entities import (
    CAPABILITY_METHODS,
    Capability,
    MediaDetail,
    MediaRecord,
    PlayableSource,
    SiteDescriptor,
)
from vodhub.domain.errors import (
    PluginInvocationError,
    UnsupportedCapabilityError,
    VodhubError,
)
from vodhub.domain.ports.invoker import InvokerPort
from vodhub.infrastructure.plugins.normalize import to_detail, to_playable, to_records

log = structlog.get_logger(__name__)

Cleanup = Callable[[], Awaitable[None]]


def missing_capabilities(impl: Any, descriptor: SiteDescriptor) -> frozenset[str]:
    """Declared capabilities whose coroutine method *impl* does not provide."""
    missing: set[str] = set()
    for capability in descriptor.capabilities:
        method = getattr(impl, CAPABILITY_METHODS[capability], None)
        if method is None or not inspect.iscoroutinefunction(method):
            missing.add(capability.value)
    return frozenset(missing)


def probe_capabilities(impl: Any, descriptor: SiteDescriptor) -> None:
    """Raise ``UnsupportedCapabilityError`` when a declared capability is absent."""
    missing = missing_capabilities(impl, descriptor)
    if missing:
        raise UnsupportedCapabilityError(
            f"site {descriptor.key!r} does not implement: {', '.join(sorted(missing))}",
            site=descriptor.key,
            missing=missing,
        )


def _accepts(method: Callable[..., Any], name: str) -> bool:
    try:
        params = inspect.signature(method).parameters
    except (TypeError, ValueError):
        return False
    return name in params or any(
        p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values()
    )


class SitePlugin:
    """Loaded, invocable plugin bound to one descriptor.

    Normalizes every return value and converts foreign exceptions into
    ``PluginInvocationError``; taxonomy errors (e.g. ``RequestTimeoutError``
    from the site's invoker) pass through unchanged.

    Owns the site's invoker and any loader resources; both are released by
    :meth:`aclose`.
    """

    def __init__(
        self,
        descriptor: SiteDescriptor,
        impl: Any,
        *,
        invoker: InvokerPort | None = None,
        cleanup: Sequence[Cleanup] = (),
    ) -> None:
        self.descriptor = descriptor
        self.impl = impl
        self._invoker = invoker
        self._cleanup = list(cleanup)
        self._closed = False
        search = getattr(impl, "search", None)
        self._search_takes_quick = search is not None and _accepts(search, "quick")

    @property
    def key(self) -> str:
        return self.descriptor.key

    @property
    def closed(self) -> bool:
        return self._closed

    def supports(self, capability: Capability) -> bool:
        return self.descriptor.supports(capability)

    async def _call(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        if self._closed:
            raise PluginInvocationError(
                f"site {self.key!r} handle is closed", site=self.key
            )
        method = getattr(self.impl, method_name, None)
        if method is None:
            raise UnsupportedCapabilityError(
                f"site {self.key!r} has no {method_name}()", site=self.key
            )
        try:
            return await method(*args, **kwargs)
        except VodhubError:
            raise
        except Exception as exc:
            raise PluginInvocationError(
                f"{self.key}.{method_name} failed: {type(exc).__name__}: {exc}",
                site=self.key,
            ) from exc

    async def search(self, keyword: str, *, quick: bool = False) -> list[MediaRecord]:
        if self._search_takes_quick:
            raw = await self._call("search", keyword, quick=quick)
        else:
            raw = await self._call("search", keyword)
        return to_records(raw, self.key)

    async def list_category(self, category_id: str, page: int = 1) -> list[MediaRecord]:
        raw = await self._call("list_category", category_id, page)
        return to_records(raw, self.key)

    async def resolve_detail(self, id: str) -> MediaDetail:
        raw = await self._call("resolve_detail", id)
        return to_detail(raw, self.key, id)

    async def resolve_playable(self, id: str) -> PlayableSource:
        raw = await self._call("resolve_playable", id)
        return to_playable(raw, self.key)

    async def aclose(self) -> None:
        """Idempotent; plugin teardown errors are logged, never raised."""
        if self._closed:
            return
        self._closed = True

        closer = getattr(self.impl, "aclose", None)
        if closer is not None and inspect.iscoroutinefunction(closer):
            try:
                await closer()
            except Exception as exc:
                log.warning("plugin_close_failed", site=self.key, error=str(exc))

        await release(self._invoker, self._cleanup, site=self.key)
        log.debug("plugin_closed", site=self.key)


async def release(
    invoker: InvokerPort | None, cleanup: Sequence[Cleanup], *, site: str
) -> None:
    """Close *invoker* and run loader cleanups (last registered first)."""
    if invoker is not None:
        await invoker.aclose()
    for step in reversed(cleanup):
        try:
            await step()
        except OSError as exc:
            log.warning("plugin_cleanup_failed", site=site, error=str(exc))
