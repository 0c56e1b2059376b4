"""Concurrent fan-out/fan-in over all capable sites."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping, Sequence

import structlog

from vodhub.application.events import EventChannel
from vodhub.domain.entities import (
    OPERATION_CAPABILITY,
    OPERATION_PARAMS,
    AggregatedResult,
    Capability,
    Operation,
    RegistryChanged,
    RegistryEntry,
    SiteHealth,
    SiteStatus,
)
from vodhub.domain.errors import (
    InvalidQueryError,
    PluginLoadError,
    RegistryError,
    RequestTimeoutError,
    UnsupportedCapabilityError,
)
from vodhub.domain.ports.cache import ResultCachePort
from vodhub.domain.ports.registry import SiteRegistryPort
from vodhub.infrastructure.cache.result_cache import ResultCache

log = structlog.get_logger(__name__)

ResultHook = Callable[[Operation, list[dict[str, Any]]], list[dict[str, Any]]]

_NEG_INF = float("-inf")

# Param each operation sorts by (descending); None = keep merge order.
_SORT_FIELD: dict[Operation, str | None] = {
    Operation.SEARCH: "score",
    Operation.LIST_CATEGORY: "updatedAt",
    Operation.RESOLVE_DETAIL: None,
    Operation.RESOLVE_PLAYABLE: None,
}


def dedupe_by_title_year(
    operation: Operation, items: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Keep the first item per (title, year); not installed by default."""
    if operation not in (Operation.SEARCH, Operation.LIST_CATEGORY):
        return items
    seen: set[tuple[str, Any]] = set()
    unique: list[dict[str, Any]] = []
    for item in items:
        marker = (" ".join(str(item.get("title", "")).casefold().split()), item.get("year"))
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique


def _sort_value(item: Mapping[str, Any], field: str) -> float:
    value = item.get(field)
    if value is None or isinstance(value, bool):
        return _NEG_INF
    try:
        return float(value)
    except (TypeError, ValueError):
        return _NEG_INF


class ContentAggregator:
    """Fans one query out to every enabled, capable site and merges results.

    - Each site runs in its own task with a deadline of "overall deadline
      minus elapsed", floored at *min_site_timeout* and capped by the
      descriptor's own ``timeout``.
    - Per-site results go through the result cache (read-through).
    - Unfinished sites are cancelled at the overall deadline and reported
      as ``timeout``; any non-success makes the result ``partial``.
    - Merge order: healthy/unknown sites before degraded ones, then
      registration order; then a stable sort by the operation's key.
    - Outcomes feed the registry's health path.

    Args:
        registry: Site registry (candidate selection, handles, health).
        cache: Result cache, or None to disable caching.
        events: Channel delivering ``RegistryChanged`` (drops memoized candidates).
        deadline_seconds: Overall query deadline.
        min_site_timeout: Floor for each site's deadline.
        max_concurrency: Max site calls running at once.
        ttls: Cache TTL per operation (seconds).
        hooks: Post-merge transforms applied in order.
    """

    def __init__(
        self,
        registry: SiteRegistryPort,
        cache: ResultCachePort | None = None,
        *,
        events: EventChannel | None = None,
        deadline_seconds: float = 10.0,
        min_site_timeout: float = 1.0,
        max_concurrency: int = 16,
        ttls: Mapping[Operation, float] | None = None,
        hooks: Sequence[ResultHook] = (),
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._deadline = deadline_seconds
        self._min_site_timeout = min_site_timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._ttls = dict(ttls or {})
        self.hooks: list[ResultHook] = list(hooks)
        self._candidates: dict[Capability, list[RegistryEntry]] = {}
        self._unsubscribe = (
            events.subscribe(self._on_registry_changed, RegistryChanged)
            if events is not None
            else None
        )

    def _on_registry_changed(self, event: RegistryChanged) -> None:
        self._candidates.clear()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Convenience entrypoints
    # ------------------------------------------------------------------

    async def search(self, keyword: str, *, quick: bool = False) -> AggregatedResult:
        return await self.query(Operation.SEARCH, {"keyword": keyword, "quick": quick})

    async def list_category(self, category_id: str, page: int = 1) -> AggregatedResult:
        return await self.query(
            Operation.LIST_CATEGORY, {"category_id": category_id, "page": page}
        )

    async def resolve_detail(self, id: str, site: str | None = None) -> AggregatedResult:
        return await self.query(Operation.RESOLVE_DETAIL, {"id": id, "site": site})

    async def resolve_playable(self, id: str, site: str | None = None) -> AggregatedResult:
        return await self.query(Operation.RESOLVE_PLAYABLE, {"id": id, "site": site})

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query(
        self,
        operation: Operation | str,
        params: Mapping[str, Any],
        capability: Capability | str | None = None,
    ) -> AggregatedResult:
        """Run *operation* on all candidates.

        Raises:
            InvalidQueryError: Unknown operation/capability or missing params.
        """
        op, clean, cap = self._validate(operation, params, capability)
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + self._deadline

        candidates, reason = self._select(op, clean, cap)
        if not candidates:
            log.info("aggregate_no_candidates", operation=op.value, reason=reason)
            return AggregatedResult(items=[], partial=True, errors={"*": reason})

        tasks: dict[str, asyncio.Task[tuple[list[dict[str, Any]], bool]]] = {
            entry.key: asyncio.create_task(
                self._run_site(entry, op, clean, deadline), name=f"site:{entry.key}"
            )
            for entry in candidates
        }
        try:
            await asyncio.wait(
                tasks.values(), timeout=max(0.0, deadline - loop.time())
            )
        finally:
            pending = [t for t in tasks.values() if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        result = AggregatedResult()
        per_site_items: dict[str, list[dict[str, Any]]] = {}
        for entry in candidates:
            key = entry.key
            status, error = await self._settle(key, tasks[key], per_site_items, result)
            result.per_site_status[key] = status
            if error:
                result.errors[key] = error

        items: list[dict[str, Any]] = []
        for entry in candidates:
            items.extend(per_site_items.get(entry.key, ()))
        sort_field = _SORT_FIELD[op]
        if sort_field is not None:
            items.sort(key=lambda i: _sort_value(i, sort_field), reverse=True)
        for hook in self.hooks:
            items = hook(op, items)

        result.items = items
        result.partial = any(s is not SiteStatus.SUCCESS for s in result.per_site_status.values())
        result.elapsed_ms = (loop.time() - started) * 1000

        statuses = list(result.per_site_status.values())
        log.info(
            "aggregate_complete",
            operation=op.value,
            candidates=len(candidates),
            succeeded=statuses.count(SiteStatus.SUCCESS),
            timeouts=statuses.count(SiteStatus.TIMEOUT),
            errors=statuses.count(SiteStatus.ERROR),
            cache_hits=len(result.cache_hits),
            items=len(items),
            elapsed_ms=round(result.elapsed_ms, 1),
        )
        return result

    async def _settle(
        self,
        key: str,
        task: asyncio.Task[tuple[list[dict[str, Any]], bool]],
        per_site_items: dict[str, list[dict[str, Any]]],
        result: AggregatedResult,
    ) -> tuple[SiteStatus, str | None]:
        if task.cancelled():
            await self._registry.record_failure(key, "deadline exceeded")
            log.warning("site_query_timeout", site=key)
            return SiteStatus.TIMEOUT, "deadline exceeded"

        exc = task.exception()
        if exc is None:
            payload, hit = task.result()
            per_site_items[key] = list(payload)
            if hit:
                result.cache_hits.append(key)
            else:
                await self._registry.record_success(key)
            return SiteStatus.SUCCESS, None

        if isinstance(exc, (asyncio.TimeoutError, RequestTimeoutError)):
            # The site's own invoker timing out is still a timeout.
            reason = str(exc).splitlines()[0] if isinstance(exc, RequestTimeoutError) else ""
            reason = reason or "site timeout"
            await self._registry.record_failure(key, reason)
            log.warning("site_query_timeout", site=key)
            return SiteStatus.TIMEOUT, reason

        message = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
        # Load failures are already recorded by acquire(); registry lookups
        # failing mid-query (site removed/disabled) say nothing about health.
        if not isinstance(exc, (PluginLoadError, UnsupportedCapabilityError, RegistryError)):
            await self._registry.record_failure(key, exc)
        log.warning(
            "site_query_failed", site=key, error_type=type(exc).__name__, error=message
        )
        return SiteStatus.ERROR, message

    async def _run_site(
        self,
        entry: RegistryEntry,
        op: Operation,
        params: Mapping[str, Any],
        deadline: float,
    ) -> tuple[list[dict[str, Any]], bool]:
        async with self._semaphore:
            loop = asyncio.get_running_loop()
            timeout = max(deadline - loop.time(), self._min_site_timeout)
            if entry.descriptor.timeout:
                timeout = min(timeout, entry.descriptor.timeout)

            async def _load() -> list[dict[str, Any]]:
                return await self._invoke(entry.key, op, params)

            ttl = self._ttls.get(op, 0)
            if self._cache is None or ttl <= 0:
                return await asyncio.wait_for(_load(), timeout=timeout), False

            cache_params = {k: v for k, v in params.items() if k != "site"}
            cache_key = ResultCache.fingerprint(entry.key, op.value, cache_params)
            return await asyncio.wait_for(
                self._cache.get_or_load(cache_key, _load, ttl), timeout=timeout
            )

    async def _invoke(
        self,
        key: str,
        op: Operation,
        params: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        plugin = await self._registry.acquire(key)
        if op is Operation.SEARCH:
            records = await plugin.search(params["keyword"], quick=params.get("quick", False))
            return [r.to_dict() for r in records]
        if op is Operation.LIST_CATEGORY:
            records = await plugin.list_category(params["category_id"], params.get("page", 1))
            return [r.to_dict() for r in records]
        if op is Operation.RESOLVE_DETAIL:
            return [(await plugin.resolve_detail(params["id"])).to_dict()]
        return [(await plugin.resolve_playable(params["id"])).to_dict()]

    # ------------------------------------------------------------------
    # Validation & candidate selection
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(
        operation: Operation | str,
        params: Mapping[str, Any],
        capability: Capability | str | None,
    ) -> tuple[Operation, dict[str, Any], Capability]:
        try:
            op = Operation(operation)
        except ValueError as e:
            raise InvalidQueryError(f"unknown operation: {operation!r}") from e

        clean: dict[str, Any] = {}
        for name, value in params.items():
            if isinstance(value, str):
                value = value.strip()
            if value is None or value == "":
                continue
            clean[name] = value

        missing = [p for p in OPERATION_PARAMS[op] if p not in clean]
        if missing:
            raise InvalidQueryError(
                f"{op.value} requires parameter(s): {', '.join(missing)}"
            )

        if op is Operation.SEARCH:
            clean["quick"] = bool(clean.get("quick", False))
        if op is Operation.LIST_CATEGORY:
            try:
                clean["page"] = int(clean.get("page", 1))
            except (TypeError, ValueError) as e:
                raise InvalidQueryError(f"page must be an integer: {clean['page']!r}") from e
            if clean["page"] < 1:
                raise InvalidQueryError("page must be >= 1")
            clean["category_id"] = str(clean["category_id"])

        if capability is None:
            cap = OPERATION_CAPABILITY[op]
        else:
            try:
                cap = Capability(capability)
            except ValueError as e:
                raise InvalidQueryError(f"unknown capability: {capability!r}") from e
        return op, clean, cap

    def _select(
        self, op: Operation, params: Mapping[str, Any], cap: Capability
    ) -> tuple[list[RegistryEntry], str]:
        # The memo is only trusted while RegistryChanged events invalidate it.
        entries = self._candidates.get(cap) if self._unsubscribe is not None else None
        if entries is None:
            entries = self._registry.list_by_capability(cap)
            if self._unsubscribe is not None:
                self._candidates[cap] = entries

        if not entries:
            return [], f"no enabled site supports {cap.value}"

        candidates = list(entries)
        if op is Operation.SEARCH:
            candidates = [e for e in candidates if e.descriptor.searchable]
            if params.get("quick"):
                candidates = [e for e in candidates if e.descriptor.quick_searchable]
            if not candidates:
                return [], "no searchable site available"

        site = params.get("site")
        if site is not None:
            candidates = [e for e in candidates if e.key == site]
            if not candidates:
                return [], f"site {site!r} is not available for {cap.value}"

        # Stable: healthy/unknown first, then degraded, registration order within.
        candidates.sort(key=lambda e: e.health is SiteHealth.DEGRADED)
        return candidates, ""

    @classmethod
    def ttls_from_config(cls, config: Any) -> dict[Operation, float]:
        """Map ``AggregatorConfig`` TTL fields onto operations."""
        return {
            Operation.SEARCH: config.search_ttl_seconds,
            Operation.LIST_CATEGORY: config.category_ttl_seconds,
            Operation.RESOLVE_DETAIL: config.detail_ttl_seconds,
            Operation.RESOLVE_PLAYABLE: config.play_ttl_seconds,
        }
