"""Database connection factory.

Provides an async connection to SQLite (default) with WAL mode, or an
asyncpg pool when CONTENTJOBS_DB_BACKEND=postgres.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Union

import aiosqlite
try:
    import asyncpg
except ImportError:
    asyncpg = None  # type: ignore

from contentjobs import config

logger = logging.getLogger("contentjobs.db")

# Type alias for DB connection/pool
DbConnection = Union[aiosqlite.Connection, Any]  # Any to support asyncpg.Pool


async def open_connection(backend: str | None = None, db_path: str | None = None) -> DbConnection:
    """Open a new database connection/pool for the configured backend."""
    backend = backend or config.DB_BACKEND
    if backend == "postgres":
        if not asyncpg:
            raise ImportError("asyncpg is required for Postgres backend.")
        logger.info(f"Connecting to PostgreSQL: {config.DATABASE_URL}")
        return await asyncpg.create_pool(config.DATABASE_URL)

    path = db_path or config.DB_PATH
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info(f"Database connection established: {path}")
    return conn


async def close_connection(db: DbConnection | None) -> None:
    """Close a connection or pool returned by open_connection."""
    if db is None:
        return
    await db.close()
    logger.info("Database connection closed")
