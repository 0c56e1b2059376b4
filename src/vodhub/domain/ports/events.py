"""Port for publishing domain events."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventPublisherPort(Protocol):
    async def publish(self, event: Any) -> None:
        """Deliver *event* to subscribers; never raises subscriber errors."""
        ...
