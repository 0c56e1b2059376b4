"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import structlog
from fastapi import FastAPI

from vodhub.application.aggregator import ContentAggregator
from vodhub.application.config_service import ConfigService
from vodhub.application.config_sources import ConfigSourceBook
from vodhub.application.events import EventChannel
from vodhub.domain.errors import ConfigError, InvokerError
from vodhub.infrastructure.cache import ResultCache
from vodhub.infrastructure.config.schema import AppConfig
from vodhub.infrastructure.config_source import ConfigFetcher
from vodhub.infrastructure.http import ResilientInvoker
from vodhub.infrastructure.plugins.loaders import LoaderSet, site_invoker_factory
from vodhub.infrastructure.registry import SiteRegistry
from vodhub.infrastructure.stores import create_store
from vodhub.interfaces.app_state import AppState

log = structlog.get_logger(__name__)


def build_services(state: AppState, config: AppConfig) -> None:
    """Wire every component onto *state* (no I/O)."""
    state.store = create_store(
        config.store.backend,
        directory=config.store.directory,
        redis_url=config.store.redis_url,
    )
    state.events = EventChannel()
    state.cache = ResultCache(
        config.cache.max_bytes,
        store=state.store,
        persist=config.cache.persist,
    )

    loaders = LoaderSet.default(
        invoker_factory=site_invoker_factory(config.http),
        work_dir=config.plugins.work_dir,
    )
    state.registry = SiteRegistry(
        loaders,
        events=state.events,
        store=state.store,
        degraded_after=config.registry.degraded_after,
        failed_after=config.registry.failed_after,
        probe_keyword=config.registry.probe_keyword,
    )

    # The config source has its own retry bound.
    fetch_http = config.http.model_copy(
        update={"max_retries": config.config_source.max_retries}
    )
    state.config_invoker = ResilientInvoker.from_config(fetch_http, name="config_source")
    state.config_sources = ConfigSourceBook(state.store)
    state.config_service = ConfigService(
        ConfigFetcher(state.config_invoker),
        state.registry,
        cache=state.cache,
        events=state.events,
        cache_ttl_seconds=config.config_source.cache_ttl_seconds,
        default_url=config.config_source.url,
        sources=state.config_sources,
        slow_source_seconds=config.config_source.slow_source_seconds,
    )

    agg = config.aggregator
    state.aggregator = ContentAggregator(
        state.registry,
        state.cache,
        events=state.events,
        deadline_seconds=agg.deadline_seconds,
        min_site_timeout=agg.min_site_timeout_seconds,
        max_concurrency=agg.max_concurrency,
        ttls=ContentAggregator.ttls_from_config(agg),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan Hook: Initialize and cleanup all resources (DI Composition Root).

    Order matters:
        1. Store (cache persistence and registry descriptors depend on it)
        2. Cache restore, registry restore, config source restore
        3. Initial config load (active source, else config_source.url)
        4. Optional warm-up of all enabled sites
    """
    state = cast(AppState, app.state)
    config = state.config

    build_services(state, config)

    await state.store.__aenter__()
    log.info("store_initialized", backend=config.store.backend)

    if config.cache.persist:
        await state.cache.restore()

    await state.registry.restore()
    await state.config_sources.restore()

    initial_url = state.config_service.current_url()
    if initial_url:
        try:
            report = await state.config_service.load()
        except (InvokerError, ConfigError) as e:
            # Keep serving whatever the registry restored.
            log.error(
                "initial_config_load_failed",
                url=initial_url,
                error_type=type(e).__name__,
                error=str(e),
            )
        else:
            log.info(
                "initial_config_loaded",
                sites=len(report.registered),
                failed=len(report.failed),
            )
    else:
        log.info("initial_config_skipped", reason="no active source or config_source.url")

    if config.registry.warm_up:
        await state.registry.warm_up()

    log.info("app_startup_complete", sites=len(state.registry))

    try:
        yield
    finally:
        state.aggregator.close()

        await state.registry.aclose()

        await state.config_invoker.aclose()
        log.info("config_invoker_closed")

        await state.store.aclose()
        log.info("store_closed")

        log.info("app_shutdown_complete")
