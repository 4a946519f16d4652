"""Postgres schema creation for the entity store."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("contentjobs.db")

SCHEMA_VERSION = 1

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS entities (
    entity_type    TEXT NOT NULL,
    id             TEXT NOT NULL,
    content        TEXT NOT NULL DEFAULT '',
    content_hash   TEXT NOT NULL DEFAULT '',
    metadata_json  JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL,
    PRIMARY KEY (entity_type, id)
);

CREATE INDEX IF NOT EXISTS idx_entities_type_updated ON entities(entity_type, updated_at DESC);
"""


async def run_migrations(pool: Any) -> None:
    """Create all tables on an asyncpg pool. Idempotent."""
    async with pool.acquire() as conn:
        await conn.execute(_TABLES)
        current_version = await conn.fetchval("SELECT MAX(version) FROM schema_version") or 0
        if current_version >= SCHEMA_VERSION:
            logger.info("Schema is up to date (version %s)", current_version)
            return
        await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info("Postgres migrations complete, schema version %s", SCHEMA_VERSION)
