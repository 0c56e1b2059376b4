"""Cache Port - interface of the result cache used by the aggregator."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol


class ResultCachePort(Protocol):
    """Async payload cache with TTL and a size budget.

    ``ttl`` is in seconds; ``ttl <= 0`` means "do not cache".
    """

    async def get(self, key: str) -> Any | None:
        """Return the payload. None = not found / expired."""
        ...

    async def put(self, key: str, payload: Any, ttl: float) -> None: ...

    async def invalidate(self, key: str) -> bool: ...

    async def clear(self) -> None: ...

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float,
    ) -> tuple[Any, bool]:
        """Return ``(payload, cache_hit)``; on miss call *loader* and store it."""
        ...
