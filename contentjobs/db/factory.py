"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from contentjobs.db.repositories.entities import SqliteEntityRepository


def get_entity_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteEntityRepository(db)
    from contentjobs.db.repositories.postgres.entities import PostgresEntityRepository
    return PostgresEntityRepository(db)
