"""Site descriptors, registry entries, and their enums."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RuntimeKind(str, Enum):
    """Execution format of a plugin payload; selects the loader."""

    ARCHIVE = "archive-plugin"
    SCRIPT = "script-plugin"
    INTERPRETED = "interpreted-plugin"


class Capability(str, Enum):
    SEARCH = "search"
    CATEGORY_LIST = "category-list"
    DETAIL = "detail"
    PLAY_RESOLVE = "play-resolve"


class SiteHealth(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


# Plugin method that implements each capability.
CAPABILITY_METHODS: dict[Capability, str] = {
    Capability.SEARCH: "search",
    Capability.CATEGORY_LIST: "list_category",
    Capability.DETAIL: "resolve_detail",
    Capability.PLAY_RESOLVE: "resolve_playable",
}


@dataclass(frozen=True)
class SiteDescriptor:
    """Declarative description of one site, parsed from a config document.

    Immutable: a config refresh produces new descriptors, it never edits
    existing ones.
    """

    key: str
    name: str
    runtime_kind: RuntimeKind
    source_location: str
    capabilities: frozenset[Capability] = frozenset()
    enabled: bool = True
    searchable: bool = True
    quick_searchable: bool = True
    version: str | None = None
    update_time: int | None = None

    # Extension payload handed to the plugin (string or mapping).
    ext: Any = None
    categories: tuple[str, ...] = ()
    timeout: float | None = None
    checksum: str | None = None
    headers: tuple[tuple[str, str], ...] = ()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def fingerprint(self) -> str:
        """Stable hash over the fields that change what a loader produces."""
        raw = json.dumps(
            {
                "kind": self.runtime_kind.value,
                "location": self.source_location,
                "version": self.version,
                "update_time": self.update_time,
                "checksum": self.checksum,
                "ext": self.ext,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(raw.encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "runtimeKind": self.runtime_kind.value,
            "sourceLocation": self.source_location,
            "capabilities": sorted(c.value for c in self.capabilities),
            "enabled": self.enabled,
            "searchable": self.searchable,
            "quickSearchable": self.quick_searchable,
            "version": self.version,
            "updateTime": self.update_time,
            "ext": self.ext,
            "categories": list(self.categories),
            "timeout": self.timeout,
            "checksum": self.checksum,
            "headers": dict(self.headers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiteDescriptor:
        """Rebuild a descriptor written by :meth:`to_dict`."""
        return cls(
            key=data["key"],
            name=data["name"],
            runtime_kind=RuntimeKind(data["runtimeKind"]),
            source_location=data["sourceLocation"],
            capabilities=frozenset(Capability(c) for c in data["capabilities"]),
            enabled=bool(data.get("enabled", True)),
            searchable=bool(data.get("searchable", True)),
            quick_searchable=bool(data.get("quickSearchable", True)),
            version=data.get("version"),
            update_time=data.get("updateTime"),
            ext=data.get("ext"),
            categories=tuple(data.get("categories") or ()),
            timeout=data.get("timeout"),
            checksum=data.get("checksum"),
            headers=tuple(sorted((data.get("headers") or {}).items())),
        )


@dataclass(frozen=True)
class RegistryEntry:
    """Snapshot of one registered site.

    The registry swaps whole snapshots, so a reader never observes a
    half-applied update.
    """

    descriptor: SiteDescriptor
    plugin: Any = None  # SitePlugin | None; kept untyped to avoid a cycle
    health: SiteHealth = SiteHealth.UNKNOWN
    last_error: str | None = None
    consecutive_failures: int = 0
    last_success_at: float | None = None
    last_failure_at: float | None = None
    loaded_fingerprint: str | None = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return self.descriptor.key

    @property
    def enabled(self) -> bool:
        return self.descriptor.enabled

    @property
    def loaded(self) -> bool:
        return self.plugin is not None

    def to_dict(self) -> dict[str, Any]:
        d = self.descriptor
        return {
            "key": d.key,
            "name": d.name,
            "runtimeKind": d.runtime_kind.value,
            "enabled": d.enabled,
            "capabilities": sorted(c.value for c in d.capabilities),
            "version": d.version,
            "health": self.health.value,
            "lastError": self.last_error,
            "consecutiveFailures": self.consecutive_failures,
            "loaded": self.loaded,
        }
