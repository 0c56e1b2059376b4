"""Config service: fetch -> parse -> apply to the registry."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import structlog

from vodhub.application.config_sources import ConfigSourceBook
from vodhub.application.events import EventChannel
from vodhub.domain.entities import (
    ConfigRefreshed,
    ConfigSource,
    SiteDescriptor,
    SourceHealth,
)
from vodhub.domain.errors import PluginError, VodhubError
from vodhub.domain.ports.cache import ResultCachePort
from vodhub.infrastructure.config_source.parser import ParsedConfig, parse_config

log = structlog.get_logger(__name__)


class _Fetcher(Protocol):
    async def fetch(self, url: str) -> str: ...


class _Registry(Protocol):
    async def register(self, descriptor: SiteDescriptor) -> Any: ...
    async def unregister(self, key: str) -> bool: ...
    def keys(self) -> list[str]: ...


@dataclass
class RefreshReport:
    """Outcome of applying one config document."""

    url: str
    from_cache: bool = False
    registered: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    dropped: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "fromCache": self.from_cache,
            "registered": self.registered,
            "removed": self.removed,
            "failed": self.failed,
            "dropped": self.dropped,
            "warnings": self.warnings,
        }


class ConfigService:
    """Orchestrates config retrieval and registry population.

    Fetch and parse errors (``NetworkError``, ``FormatError``,
    ``ConfigValidationError``) propagate before the registry is touched.
    Once a document parsed, every descriptor is applied; per-site plugin
    errors are collected into the report.
    """

    def __init__(
        self,
        fetcher: _Fetcher,
        registry: _Registry,
        *,
        cache: ResultCachePort | None = None,
        events: EventChannel | None = None,
        cache_ttl_seconds: float = 600.0,
        default_url: str | None = None,
        sources: ConfigSourceBook | None = None,
        slow_source_seconds: float = 5.0,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._fetcher = fetcher
        self._registry = registry
        self._cache = cache
        self._events = events
        self._ttl = cache_ttl_seconds
        self.default_url = default_url
        self.sources = sources
        self._slow_after = slow_source_seconds
        self._timer = timer
        self.last_report: RefreshReport | None = None

    @staticmethod
    def _cache_key(url: str) -> str:
        return f"config:document:{url}"

    async def load(self, url: str | None = None) -> RefreshReport:
        """Apply the document at *url*, reusing a fresh cached copy."""
        url = self._resolve_url(url)
        if self._cache is not None:
            cached = await self._cache.get(self._cache_key(url))
            if isinstance(cached, str):
                log.debug("config_cache_hit", url=url)
                return await self._apply(url, cached, from_cache=True)
        return await self.refresh(url)

    async def refresh(self, url: str | None = None) -> RefreshReport:
        """Fetch *url* unconditionally and apply it."""
        url = self._resolve_url(url)
        document = await self._fetcher.fetch(url)
        report = await self._apply(url, document, from_cache=False)
        if self._cache is not None:
            await self._cache.put(self._cache_key(url), document, self._ttl)
        return report

    def current_url(self, url: str | None = None) -> str | None:
        """Explicit *url*, else the primary active source, else the configured default."""
        if url:
            return url
        if self.sources is not None:
            primary = self.sources.primary()
            if primary is not None:
                return primary.url
        return self.default_url

    def _resolve_url(self, url: str | None) -> str:
        url = self.current_url(url)
        if not url:
            raise ValueError("no config url given and none configured")
        return url

    async def check_source(self, id: str) -> ConfigSource:
        """Fetch and parse one registered source without applying it.

        The outcome is recorded on the source: ``error`` when the document
        cannot be fetched or yields no sites, ``warning`` when it took longer
        than ``slow_source_seconds``, ``healthy`` otherwise.

        Raises:
            ValueError: No source book is configured.
            SourceNotFoundError: *id* is not registered.
        """
        if self.sources is None:
            raise ValueError("no config source book configured")
        source = self.sources.get(id)
        started = self._timer()
        try:
            document = await self._fetcher.fetch(source.url)
            parse_config(document, base_url=source.url)
        except VodhubError as e:
            elapsed_ms = (self._timer() - started) * 1000
            log.warning(
                "config_source_check_failed",
                source=id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return await self.sources.record_check(
                id,
                SourceHealth.ERROR,
                response_ms=elapsed_ms,
                error=str(e).splitlines()[0] if str(e) else type(e).__name__,
            )
        elapsed_ms = (self._timer() - started) * 1000
        health = (
            SourceHealth.WARNING
            if elapsed_ms > self._slow_after * 1000
            else SourceHealth.HEALTHY
        )
        log.info("config_source_checked", source=id, health=health.value, ms=elapsed_ms)
        return await self.sources.record_check(id, health, response_ms=elapsed_ms)

    async def _apply(self, url: str, document: str, *, from_cache: bool) -> RefreshReport:
        parsed: ParsedConfig = parse_config(document, base_url=url)
        report = RefreshReport(
            url=url,
            from_cache=from_cache,
            dropped=parsed.dropped,
            warnings=list(parsed.warnings),
        )

        incoming = {d.key for d in parsed.descriptors}
        for descriptor in parsed.descriptors:
            try:
                await self._registry.register(descriptor)
            except PluginError as e:
                report.failed[descriptor.key] = str(e).splitlines()[0]
                log.warning(
                    "config_site_apply_failed",
                    site=descriptor.key,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            report.registered.append(descriptor.key)

        for key in self._registry.keys():
            if key not in incoming and await self._registry.unregister(key):
                report.removed.append(key)

        log.info(
            "config_applied",
            url=url,
            from_cache=from_cache,
            registered=len(report.registered),
            removed=len(report.removed),
            failed=len(report.failed),
            dropped=report.dropped,
        )
        if self._events is not None:
            await self._events.publish(
                ConfigRefreshed(url=url, site_count=len(parsed.descriptors))
            )
        self.last_report = report
        return report
