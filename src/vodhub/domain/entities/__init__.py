from .aggregation import (
    OPERATION_CAPABILITY,
    OPERATION_PARAMS,
    AggregatedResult,
    Operation,
    SiteStatus,
)
from .cache import CacheEntry
from .config_source import ConfigSource, SourceHealth, source_id
from .events import ConfigRefreshed, RegistryChanged
from .media import EpisodeGroup, MediaDetail, MediaRecord, PlayableSource
from .site import (
    CAPABILITY_METHODS,
    Capability,
    RegistryEntry,
    RuntimeKind,
    SiteDescriptor,
    SiteHealth,
)

__all__ = [
    "CAPABILITY_METHODS",
    "OPERATION_CAPABILITY",
    "OPERATION_PARAMS",
    "AggregatedResult",
    "CacheEntry",
    "Capability",
    "ConfigRefreshed",
    "ConfigSource",
    "EpisodeGroup",
    "MediaDetail",
    "MediaRecord",
    "Operation",
    "PlayableSource",
    "RegistryChanged",
    "RegistryEntry",
    "RuntimeKind",
    "SiteDescriptor",
    "SiteHealth",
    "SiteStatus",
    "SourceHealth",
    "source_id",
]
