"""SQLite implementation of EntityRepository."""
from __future__ import annotations

import json
from typing import Any

import aiosqlite

from contentjobs.errors import EntityConflictError

_COLUMN_SORT_FIELDS = {
    "id": "id",
    "created": "created_at",
    "updated": "updated_at",
}


def _row_to_entity(row: Any) -> dict[str, Any]:
    try:
        metadata = json.loads(row["metadata_json"] or "{}")
    except (TypeError, ValueError):
        metadata = {}
    return {
        "id": row["id"],
        "entityType": row["entity_type"],
        "content": row["content"] or "",
        "contentHash": row["content_hash"] or "",
        "metadata": metadata if isinstance(metadata, dict) else {},
        "created": row["created_at"],
        "updated": row["updated_at"],
    }


def _entity_params(entity: dict) -> tuple:
    return (
        entity["entityType"],
        entity["id"],
        entity.get("content", ""),
        entity.get("contentHash", ""),
        json.dumps(entity.get("metadata") or {}, sort_keys=True),
        entity.get("created", ""),
        entity.get("updated", ""),
    )


class SqliteEntityRepository:
    """SQLite-backed entity storage keyed by (entity_type, id)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    def _build_where_clause(self, entity_type: str, filters: dict | None = None) -> tuple[str, list[Any]]:
        clauses = ["entity_type = ?"]
        params: list[Any] = [entity_type]
        for key, value in (filters or {}).items():
            path = f"$.{key}"
            if value is None:
                clauses.append("json_extract(metadata_json, ?) IS NULL")
                params.append(path)
            else:
                # Round-trip through JSON so booleans/numbers compare like stored values.
                clauses.append("json_extract(metadata_json, ?) = json_extract(?, '$')")
                params.extend([path, json.dumps(value)])
        return " AND ".join(clauses), params

    def _build_order_clause(self, sort: list[tuple[str, str]] | None) -> tuple[str, list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        for field, direction in sort or []:
            order = "DESC" if str(direction).lower() == "desc" else "ASC"
            column = _COLUMN_SORT_FIELDS.get(field)
            if column:
                parts.append(f"{column} {order}")
            else:
                parts.append(f"json_extract(metadata_json, ?) {order}")
                params.append(f"$.{field}")
        parts.append("id ASC")
        return ", ".join(parts), params

    async def get(self, entity_type: str, entity_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM entities WHERE entity_type = ? AND id = ?",
            (entity_type, entity_id),
        ) as cur:
            row = await cur.fetchone()
        return _row_to_entity(row) if row else None

    async def list(
        self,
        entity_type: str,
        filters: dict | None = None,
        sort: list[tuple[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict]:
        where, params = self._build_where_clause(entity_type, filters)
        order, order_params = self._build_order_clause(sort)
        query = f"SELECT * FROM entities WHERE {where} ORDER BY {order}"
        params.extend(order_params)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([max(0, int(limit)), max(0, int(offset))])
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(max(0, int(offset)))
        async with self.db.execute(query, params) as cur:
            rows = await cur.fetchall()
        return [_row_to_entity(r) for r in rows]

    async def count(self, entity_type: str, filters: dict | None = None) -> int:
        where, params = self._build_where_clause(entity_type, filters)
        async with self.db.execute(f"SELECT COUNT(*) FROM entities WHERE {where}", params) as cur:
            row = await cur.fetchone()
        return int(row[0]) if row else 0

    async def create(self, entity: dict) -> None:
        try:
            await self.db.execute(
                """INSERT INTO entities (
                    entity_type, id, content, content_hash, metadata_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                _entity_params(entity),
            )
        except aiosqlite.IntegrityError as exc:
            raise EntityConflictError(entity["entityType"], entity["id"]) from exc
        await self.db.commit()

    async def update(self, entity: dict) -> bool:
        async with self.db.execute(
            """UPDATE entities SET
                content = ?, content_hash = ?, metadata_json = ?, updated_at = ?
            WHERE entity_type = ? AND id = ?""",
            (
                entity.get("content", ""),
                entity.get("contentHash", ""),
                json.dumps(entity.get("metadata") or {}, sort_keys=True),
                entity.get("updated", ""),
                entity["entityType"],
                entity["id"],
            ),
        ) as cur:
            changed = cur.rowcount > 0
        await self.db.commit()
        return changed

    async def upsert(self, entity: dict) -> None:
        await self.db.execute(
            """INSERT INTO entities (
                entity_type, id, content, content_hash, metadata_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entity_type, id) DO UPDATE SET
                content=excluded.content,
                content_hash=excluded.content_hash,
                metadata_json=excluded.metadata_json,
                updated_at=excluded.updated_at
            """,
            _entity_params(entity),
        )
        await self.db.commit()

    async def delete(self, entity_type: str, entity_id: str) -> bool:
        async with self.db.execute(
            "DELETE FROM entities WHERE entity_type = ? AND id = ?",
            (entity_type, entity_id),
        ) as cur:
            removed = cur.rowcount > 0
        await self.db.commit()
        return removed
