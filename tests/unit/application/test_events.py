"""Tests for the in-process event channel."""

from __future__ import annotations

from vodhub.application.events import EventChannel
from vodhub.domain.entities import ConfigRefreshed, RegistryChanged


class TestEventChannel:
    async def test_sync_and_async_subscribers(self) -> None:
        channel = EventChannel()
        seen: list[object] = []

        async def on_async(event: object) -> None:
            seen.append(("async", event))

        channel.subscribe(seen.append)
        channel.subscribe(on_async)
        event = RegistryChanged("a", "registered")
        await channel.publish(event)
        assert seen == [event, ("async", event)]

    async def test_type_filter(self) -> None:
        channel = EventChannel()
        seen: list[object] = []
        channel.subscribe(seen.append, ConfigRefreshed)
        await channel.publish(RegistryChanged("a", "health"))
        await channel.publish(ConfigRefreshed("u", 2))
        assert seen == [ConfigRefreshed("u", 2)]

    async def test_failing_subscriber_isolated(self) -> None:
        channel = EventChannel()
        seen: list[object] = []

        def broken(event: object) -> None:
            raise RuntimeError("subscriber bug")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        await channel.publish("ping")
        assert seen == ["ping"]

    async def test_unsubscribe(self) -> None:
        channel = EventChannel()
        seen: list[object] = []
        unsubscribe = channel.subscribe(seen.append)
        assert len(channel) == 1
        unsubscribe()
        unsubscribe()
        await channel.publish("ping")
        assert seen == []
        assert len(channel) == 0
