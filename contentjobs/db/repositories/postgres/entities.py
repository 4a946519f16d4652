"""PostgreSQL implementation of EntityRepository."""
from __future__ import annotations

import json
from typing import Any

import asyncpg

from contentjobs.errors import EntityConflictError

_COLUMN_SORT_FIELDS = {
    "id": "id",
    "created": "created_at",
    "updated": "updated_at",
}


def _affected(status: str) -> int:
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _row_to_entity(row: Any) -> dict[str, Any]:
    metadata = row["metadata_json"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata or "{}")
    return {
        "id": row["id"],
        "entityType": row["entity_type"],
        "content": row["content"] or "",
        "contentHash": row["content_hash"] or "",
        "metadata": metadata if isinstance(metadata, dict) else {},
        "created": row["created_at"],
        "updated": row["updated_at"],
    }


class PostgresEntityRepository:
    """PostgreSQL-backed entity storage keyed by (entity_type, id)."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    def _build_where_clause(self, entity_type: str, filters: dict | None = None) -> tuple[str, list[Any]]:
        clauses = ["entity_type = $1"]
        params: list[Any] = [entity_type]
        for key, value in (filters or {}).items():
            params.append(key)
            key_ref = f"${len(params)}"
            if value is None:
                clauses.append(f"((metadata_json -> {key_ref}) IS NULL OR (metadata_json -> {key_ref}) = 'null'::jsonb)")
            else:
                params.append(json.dumps(value))
                clauses.append(f"(metadata_json -> {key_ref}) = ${len(params)}::jsonb")
        return " AND ".join(clauses), params

    async def get(self, entity_type: str, entity_id: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM entities WHERE entity_type = $1 AND id = $2",
            entity_type, entity_id,
        )
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
        order_parts: list[str] = []
        for field, direction in sort or []:
            order = "DESC" if str(direction).lower() == "desc" else "ASC"
            column = _COLUMN_SORT_FIELDS.get(field)
            if column:
                order_parts.append(f"{column} {order}")
            else:
                params.append(field)
                order_parts.append(f"(metadata_json ->> ${len(params)}) {order}")
        order_parts.append("id ASC")
        query = f"SELECT * FROM entities WHERE {where} ORDER BY {', '.join(order_parts)}"
        if limit is not None:
            params.extend([max(0, int(limit)), max(0, int(offset))])
            query += f" LIMIT ${len(params) - 1} OFFSET ${len(params)}"
        elif offset:
            params.append(max(0, int(offset)))
            query += f" OFFSET ${len(params)}"
        rows = await self.db.fetch(query, *params)
        return [_row_to_entity(r) for r in rows]

    async def count(self, entity_type: str, filters: dict | None = None) -> int:
        where, params = self._build_where_clause(entity_type, filters)
        return int(await self.db.fetchval(f"SELECT COUNT(*) FROM entities WHERE {where}", *params) or 0)

    async def create(self, entity: dict) -> None:
        try:
            await self.db.execute(
                """INSERT INTO entities (
                    entity_type, id, content, content_hash, metadata_json, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)""",
                entity["entityType"], entity["id"],
                entity.get("content", ""),
                entity.get("contentHash", ""),
                json.dumps(entity.get("metadata") or {}),
                entity.get("created", ""),
                entity.get("updated", ""),
            )
        except asyncpg.UniqueViolationError as exc:
            raise EntityConflictError(entity["entityType"], entity["id"]) from exc

    async def update(self, entity: dict) -> bool:
        status = await self.db.execute(
            """UPDATE entities SET
                content = $3, content_hash = $4, metadata_json = $5::jsonb, updated_at = $6
            WHERE entity_type = $1 AND id = $2""",
            entity["entityType"], entity["id"],
            entity.get("content", ""),
            entity.get("contentHash", ""),
            json.dumps(entity.get("metadata") or {}),
            entity.get("updated", ""),
        )
        return _affected(status) > 0

    async def upsert(self, entity: dict) -> None:
        await self.db.execute(
            """INSERT INTO entities (
                entity_type, id, content, content_hash, metadata_json, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)
            ON CONFLICT(entity_type, id) DO UPDATE SET
                content=EXCLUDED.content,
                content_hash=EXCLUDED.content_hash,
                metadata_json=EXCLUDED.metadata_json,
                updated_at=EXCLUDED.updated_at
            """,
            entity["entityType"], entity["id"],
            entity.get("content", ""),
            entity.get("contentHash", ""),
            json.dumps(entity.get("metadata") or {}),
            entity.get("created", ""),
            entity.get("updated", ""),
        )

    async def delete(self, entity_type: str, entity_id: str) -> bool:
        status = await self.db.execute(
            "DELETE FROM entities WHERE entity_type = $1 AND id = $2",
            entity_type, entity_id,
        )
        return _affected(status) > 0
