import unittest

import aiosqlite

from contentjobs.db.repositories.entities import SqliteEntityRepository
from contentjobs.db.sqlite_migrations import SCHEMA_VERSION, run_migrations
from contentjobs.errors import EntityConflictError


def _row(entity_id: str, entity_type: str = "post", **metadata) -> dict:
    return {
        "id": entity_id,
        "entityType": entity_type,
        "content": f"content of {entity_id}",
        "contentHash": "",
        "metadata": metadata,
        "created": "2026-01-01T00:00:00+00:00",
        "updated": "2026-01-01T00:00:00+00:00",
    }


class EntityRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteEntityRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_migrations_are_idempotent(self) -> None:
        await run_migrations(self.db)
        async with self.db.execute("SELECT COUNT(*), MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
        self.assertEqual((row[0], row[1]), (1, SCHEMA_VERSION))
        self.assertEqual(SCHEMA_VERSION, 1)

    async def test_ids_are_scoped_per_entity_type(self) -> None:
        await self.repo.create(_row("shared", "post"))
        await self.repo.create(_row("shared", "note"))

        self.assertEqual((await self.repo.get("post", "shared"))["entityType"], "post")
        self.assertEqual((await self.repo.get("note", "shared"))["entityType"], "note")
        self.assertIsNone(await self.repo.get("series", "shared"))

    async def test_create_conflict_raises(self) -> None:
        await self.repo.create(_row("p1"))
        with self.assertRaises(EntityConflictError):
            await self.repo.create(_row("p1"))

    async def test_list_filters_on_metadata(self) -> None:
        await self.repo.create(_row("p1", seriesName="AI", published=True))
        await self.repo.create(_row("p2", seriesName="AI", published=False))
        await self.repo.create(_row("p3", seriesName="Rust"))
        await self.repo.create(_row("p4"))

        in_ai = await self.repo.list("post", filters={"seriesName": "AI"})
        self.assertEqual([row["id"] for row in in_ai], ["p1", "p2"])

        published = await self.repo.list("post", filters={"published": True})
        self.assertEqual([row["id"] for row in published], ["p1"])

        ungrouped = await self.repo.list("post", filters={"seriesName": None})
        self.assertEqual([row["id"] for row in ungrouped], ["p4"])
        self.assertEqual(await self.repo.count("post", filters={"seriesName": "AI"}), 2)

    async def test_list_sort_limit_offset(self) -> None:
        for entity_id, index in (("a", 3), ("b", 1), ("c", 2)):
            await self.repo.create(_row(entity_id, seriesIndex=index))

        ordered = await self.repo.list("post", sort=[("seriesIndex", "desc")])
        self.assertEqual([row["id"] for row in ordered], ["a", "c", "b"])

        page = await self.repo.list("post", limit=1, offset=1)
        self.assertEqual([row["id"] for row in page], ["b"])

    async def test_update_upsert_delete(self) -> None:
        self.assertFalse(await self.repo.update(_row("missing")))

        await self.repo.upsert(_row("p1", title="One"))
        changed = _row("p1", title="Uno")
        changed["created"] = "2030-01-01T00:00:00+00:00"
        await self.repo.upsert(changed)

        stored = await self.repo.get("post", "p1")
        self.assertEqual(stored["metadata"], {"title": "Uno"})
        self.assertEqual(stored["created"], "2026-01-01T00:00:00+00:00")

        self.assertTrue(await self.repo.delete("post", "p1"))
        self.assertFalse(await self.repo.delete("post", "p1"))


if __name__ == "__main__":
    unittest.main()
