"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.datastructures import State

from vodhub.infrastructure.config import AppConfig

if TYPE_CHECKING:
    from vodhub.application.aggregator import ContentAggregator
    from vodhub.application.config_service import ConfigService
    from vodhub.application.config_sources import ConfigSourceBook
    from vodhub.application.events import EventChannel
    from vodhub.domain.ports import KeyValueStorePort
    from vodhub.infrastructure.cache import ResultCache
    from vodhub.infrastructure.http import ResilientInvoker
    from vodhub.infrastructure.registry import SiteRegistry


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    store: KeyValueStorePort
    cache: ResultCache
    config_invoker: ResilientInvoker

    # Event channel (registry-changed / config-refreshed)
    events: EventChannel

    # Site registry (sole owner of plugin handles)
    registry: SiteRegistry

    # Application services
    config_sources: ConfigSourceBook
    config_service: ConfigService
    aggregator: ContentAggregator
