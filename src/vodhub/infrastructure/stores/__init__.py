from __future__ import annotations

from .diskcache_store import DiskcacheStore
from .factory import create_store
from .memory import MemoryStore
from .redis_store import RedisStore

__all__ = ["DiskcacheStore", "MemoryStore", "RedisStore", "create_store"]
