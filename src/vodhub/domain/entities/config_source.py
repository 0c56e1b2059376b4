"""Config sources: the site documents the host knows about."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any


class SourceHealth(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    # reachable and parseable, but slow
    WARNING = "warning"
    ERROR = "error"


def source_id(url: str) -> str:
    """Stable id derived from the source url."""
    return hashlib.sha256(url.strip().encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class ConfigSource:
    """One registered config document.

    Lower ``priority`` wins when several sources are active.
    """

    id: str
    name: str
    url: str
    active: bool = True
    priority: int = 1
    added_at: float = 0.0
    updated_at: float = 0.0
    health: SourceHealth = SourceHealth.UNKNOWN
    last_checked_at: float | None = None
    last_error: str | None = None
    response_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "active": self.active,
            "priority": self.priority,
            "addedAt": self.added_at,
            "updatedAt": self.updated_at,
            "health": self.health.value,
            "lastCheckedAt": self.last_checked_at,
            "lastError": self.last_error,
            "responseMs": self.response_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfigSource:
        return cls(
            id=data["id"],
            name=data["name"],
            url=data["url"],
            active=bool(data.get("active", True)),
            priority=int(data.get("priority", 1)),
            added_at=float(data.get("addedAt") or 0.0),
            updated_at=float(data.get("updatedAt") or 0.0),
            health=SourceHealth(data.get("health", SourceHealth.UNKNOWN.value)),
            last_checked_at=data.get("lastCheckedAt"),
            last_error=data.get("lastError"),
            response_ms=data.get("responseMs"),
        )
