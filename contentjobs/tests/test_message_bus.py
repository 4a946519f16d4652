import asyncio
import unittest

from contentjobs.services.message_bus import MessageBus


class MessageBusTests(unittest.IsolatedAsyncioTestCase):
    async def test_publish_does_not_wait_for_subscribers(self) -> None:
        bus = MessageBus()
        release = asyncio.Event()
        seen: list[str] = []

        async def slow(message) -> None:
            await release.wait()
            seen.append(message.payload["id"])

        bus.subscribe("entity:created", slow)
        bus.publish("entity:created", {"id": "p1"})
        self.assertEqual(seen, [])

        release.set()
        await bus.drain()
        self.assertEqual(seen, ["p1"])

    async def test_failing_subscriber_does_not_affect_others(self) -> None:
        bus = MessageBus()
        seen: list[str] = []

        async def broken(message) -> None:
            raise RuntimeError("boom")

        async def healthy(message) -> None:
            seen.append(message.event_type)

        bus.subscribe("entity:updated", broken)
        bus.subscribe("entity:updated", healthy)
        with self.assertLogs("contentjobs.bus", level="ERROR"):
            bus.publish("entity:updated", {})
            await bus.drain()
        self.assertEqual(seen, ["entity:updated"])

    async def test_unsubscribe(self) -> None:
        bus = MessageBus()
        seen: list[str] = []

        async def handler(message) -> None:
            seen.append(message.event_type)

        unsubscribe = bus.subscribe("entity:deleted", handler)
        self.assertEqual(bus.subscriber_count("entity:deleted"), 1)
        unsubscribe()
        self.assertEqual(bus.subscriber_count("entity:deleted"), 0)

        bus.publish("entity:deleted", {})
        await bus.drain()
        self.assertEqual(seen, [])

    async def test_drain_waits_for_nested_publishes(self) -> None:
        bus = MessageBus()
        seen: list[str] = []

        async def relay(message) -> None:
            bus.publish("second", {})

        async def sink(message) -> None:
            seen.append(message.event_type)

        bus.subscribe("first", relay)
        bus.subscribe("second", sink)
        bus.publish("first", {})
        await bus.drain()
        self.assertEqual(seen, ["second"])


if __name__ == "__main__":
    unittest.main()
