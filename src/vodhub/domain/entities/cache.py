from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    ttl: float
    size_bytes: int

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl
