import unittest

import aiosqlite

from contentjobs.db.sqlite_migrations import run_migrations
from contentjobs.entity_ids import compute_content_hash
from contentjobs.errors import EntityConflictError, EntityNotFoundError
from contentjobs.models import Entity
from contentjobs.services.entity_service import EntityService
from contentjobs.services.message_bus import (
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_UPDATED,
    MessageBus,
)


class EntityServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.bus = MessageBus()
        self.events: list[tuple[str, str]] = []

        async def _record(message) -> None:
            self.events.append((message.event_type, message.payload["entityId"]))

        for event_type in (ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED):
            self.bus.subscribe(event_type, _record)
        self.service = EntityService.for_connection(self.db, self.bus)

    async def asyncTearDown(self) -> None:
        await self.bus.drain()
        await self.db.close()

    async def test_create_sets_hash_and_timestamps(self) -> None:
        result = await self.service.create_entity(
            Entity(id="p1", entityType="post", content="hello", contentHash="stale")
        )
        self.assertEqual(result.entityId, "p1")
        self.assertTrue(result.created)

        stored = await self.service.get_entity("post", "p1")
        self.assertEqual(stored.contentHash, compute_content_hash("hello"))
        self.assertTrue(stored.created)
        self.assertEqual(stored.created, stored.updated)

        await self.bus.drain()
        self.assertEqual(self.events, [(ENTITY_CREATED, "p1")])

    async def test_create_existing_id_conflicts(self) -> None:
        await self.service.create_entity(Entity(id="p1", entityType="post"))
        with self.assertRaises(EntityConflictError):
            await self.service.create_entity(Entity(id="p1", entityType="post"))

    async def test_update_keeps_created_and_rehashes(self) -> None:
        await self.service.create_entity(Entity(id="p1", entityType="post", content="v1"))
        original = await self.service.get_entity("post", "p1")

        await self.service.update_entity(original.model_copy(update={"content": "v2", "created": "1999"}))
        stored = await self.service.get_entity("post", "p1")
        self.assertEqual(stored.content, "v2")
        self.assertEqual(stored.contentHash, compute_content_hash("v2"))
        self.assertEqual(stored.created, original.created)

        await self.bus.drain()
        self.assertEqual(self.events[-1], (ENTITY_UPDATED, "p1"))

    async def test_update_missing_entity_raises(self) -> None:
        with self.assertRaises(EntityNotFoundError):
            await self.service.update_entity(Entity(id="ghost", entityType="post"))

    async def test_upsert_reports_created_then_updated(self) -> None:
        first = await self.service.upsert_entity(Entity(id="s1", entityType="series", content="a"))
        second = await self.service.upsert_entity(Entity(id="s1", entityType="series", content="b"))
        self.assertTrue(first.created)
        self.assertFalse(second.created)

        await self.bus.drain()
        self.assertEqual(self.events, [(ENTITY_CREATED, "s1"), (ENTITY_UPDATED, "s1")])

    async def test_delete_returns_whether_removed(self) -> None:
        await self.service.create_entity(Entity(id="p1", entityType="post"))
        self.assertTrue(await self.service.delete_entity("post", "p1"))
        self.assertFalse(await self.service.delete_entity("post", "p1"))

        await self.bus.drain()
        self.assertEqual(self.events, [(ENTITY_CREATED, "p1"), (ENTITY_DELETED, "p1")])

    async def test_list_entities_by_metadata(self) -> None:
        await self.service.create_entity(Entity(id="p1", entityType="post", metadata={"seriesName": "AI"}))
        await self.service.create_entity(Entity(id="p2", entityType="post", metadata={"seriesName": "Go"}))

        entities = await self.service.list_entities("post", filters={"seriesName": "AI"})
        self.assertEqual([entity.id for entity in entities], ["p1"])


if __name__ == "__main__":
    unittest.main()
