"""Aggregator query/response types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .site import Capability


class Operation(str, Enum):
    SEARCH = "search"
    LIST_CATEGORY = "listCategory"
    RESOLVE_DETAIL = "resolveDetail"
    RESOLVE_PLAYABLE = "resolvePlayable"


class SiteStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


# Capability an operation needs when the caller does not name one.
OPERATION_CAPABILITY: dict[Operation, Capability] = {
    Operation.SEARCH: Capability.SEARCH,
    Operation.LIST_CATEGORY: Capability.CATEGORY_LIST,
    Operation.RESOLVE_DETAIL: Capability.DETAIL,
    Operation.RESOLVE_PLAYABLE: Capability.PLAY_RESOLVE,
}

# Required params per operation.
OPERATION_PARAMS: dict[Operation, tuple[str, ...]] = {
    Operation.SEARCH: ("keyword",),
    Operation.LIST_CATEGORY: ("category_id",),
    Operation.RESOLVE_DETAIL: ("id",),
    Operation.RESOLVE_PLAYABLE: ("id",),
}


@dataclass
class AggregatedResult:
    """Merged response of one aggregator query.

    ``items`` holds already-serializable records (dicts), each carrying
    the ``site`` key it came from.
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    partial: bool = False
    per_site_status: dict[str, SiteStatus] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    cache_hits: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "partial": self.partial,
            "perSiteStatus": {k: v.value for k, v in self.per_site_status.items()},
            "errors": self.errors,
            "cacheHits": self.cache_hits,
            "elapsedMs": round(self.elapsed_ms, 2),
        }
