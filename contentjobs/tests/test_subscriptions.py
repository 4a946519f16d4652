import unittest

import aiosqlite

from contentjobs.db.sqlite_migrations import run_migrations
from contentjobs.jobs.aggregate_sync import AGGREGATE_SYNC_JOB, AggregateSyncJobHandler
from contentjobs.jobs.queue import JobQueue
from contentjobs.jobs.registry import HandlerRegistry
from contentjobs.models import Entity
from contentjobs.services.aggregate_sync import AggregateDefinition, AggregateSyncManager
from contentjobs.services.entity_service import EntityService
from contentjobs.services.message_bus import INITIAL_SYNC_COMPLETED, MessageBus
from contentjobs.services.subscriptions import register_aggregate_subscriptions

DEFINITION = AggregateDefinition(
    primary_type="post",
    aggregate_type="series",
    key_field="seriesName",
    id_prefix="agg",
)


class AggregateSubscriptionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.bus = MessageBus()
        self.service = EntityService.for_connection(self.db, self.bus)
        self.manager = AggregateSyncManager(self.service, DEFINITION)
        self.queue: JobQueue | None = None

    async def asyncTearDown(self) -> None:
        await self.bus.drain()
        if self.queue is not None:
            await self.queue.stop()
        await self.db.close()

    async def test_primary_lifecycle_triggers_inline_rebuild(self) -> None:
        register_aggregate_subscriptions(self.bus, self.manager)

        await self.service.create_entity(Entity(id="P1", entityType="post", metadata={"seriesName": "AI"}))
        await self.bus.drain()
        self.assertIsNotNone(await self.service.get_entity("series", "agg-ai"))

        p1 = await self.service.get_entity("post", "P1")
        await self.service.update_entity(p1.model_copy(update={"metadata": {}}))
        await self.bus.drain()
        self.assertIsNone(await self.service.get_entity("series", "agg-ai"))

    async def test_delete_of_primary_triggers_rebuild(self) -> None:
        register_aggregate_subscriptions(self.bus, self.manager)
        await self.service.create_entity(Entity(id="P1", entityType="post", metadata={"seriesName": "AI"}))
        await self.bus.drain()

        await self.service.delete_entity("post", "P1")
        await self.bus.drain()
        self.assertEqual(await self.service.list_entities("series"), [])

    async def test_initial_sync_signal_rebuilds(self) -> None:
        await EntityService.for_connection(self.db).create_entity(
            Entity(id="P1", entityType="post", metadata={"seriesName": "AI"})
        )
        register_aggregate_subscriptions(self.bus, self.manager)

        self.bus.publish(INITIAL_SYNC_COMPLETED, {})
        await self.bus.drain()
        self.assertIsNotNone(await self.service.get_entity("series", "agg-ai"))

    async def test_non_primary_events_are_ignored(self) -> None:
        calls = []

        async def _fake_sync(progress=None, *, trigger="manual"):
            calls.append(trigger)

        self.manager.sync_aggregates = _fake_sync
        register_aggregate_subscriptions(self.bus, self.manager)

        await self.service.create_entity(Entity(id="n1", entityType="note"))
        await self.bus.drain()
        self.assertEqual(calls, [])

    async def test_rebuild_is_enqueued_when_queue_given(self) -> None:
        self.queue = JobQueue(HandlerRegistry())
        self.queue.register_handler(AGGREGATE_SYNC_JOB, AggregateSyncJobHandler(self.manager))
        await self.queue.start()
        register_aggregate_subscriptions(self.bus, self.manager, self.queue)

        await self.service.create_entity(Entity(id="P1", entityType="post", metadata={"seriesName": "AI"}))
        await self.bus.drain()

        jobs = await self.queue.list_jobs(limit=5)
        self.assertEqual([job["jobType"] for job in jobs], [AGGREGATE_SYNC_JOB])
        job = await self.queue.wait_for(jobs[0]["id"], timeout=2)
        self.assertEqual(job["status"], "completed")
        self.assertEqual(job["data"]["trigger"], "entity-event")
        self.assertEqual(job["result"]["aggregateIds"], ["agg-ai"])

    async def test_unsubscribe_stops_rebuilds(self) -> None:
        for unsubscribe in register_aggregate_subscriptions(self.bus, self.manager):
            unsubscribe()

        await self.service.create_entity(Entity(id="P1", entityType="post", metadata={"seriesName": "AI"}))
        await self.bus.drain()
        self.assertEqual(await self.service.list_entities("series"), [])


if __name__ == "__main__":
    unittest.main()
