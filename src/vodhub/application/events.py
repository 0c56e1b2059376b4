"""In-process publish/subscribe channel."""

from __future__ import annotations

import inspect
from typing import Any, Callable

import structlog

log = structlog.get_logger(__name__)

Subscriber = Callable[[Any], Any]


class EventChannel:
    """Explicit event channel passed to publishers and subscribers.

    Subscribers may be plain callables or coroutine functions and may
    filter by event type. A failing subscriber is logged; it never breaks
    the publisher or the other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[Subscriber, tuple[type, ...]]] = []

    def subscribe(
        self, callback: Subscriber, *event_types: type
    ) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        entry = (callback, tuple(event_types))
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(entry)
            except ValueError:
                pass

        return _unsubscribe

    async def publish(self, event: Any) -> None:
        for callback, types in list(self._subscribers):
            if types and not isinstance(event, types):
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception(
                    "event_subscriber_failed",
                    event_type=type(event).__name__,
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                )

    def __len__(self) -> int:
        return len(self._subscribers)
