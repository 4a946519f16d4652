"""Pick the schema migration for whichever backend ``open_connection`` returned."""
from __future__ import annotations

from typing import Any

import aiosqlite
try:
    import asyncpg
except ImportError:
    asyncpg = None

from contentjobs.db import postgres_migrations, sqlite_migrations


async def run_migrations(db: Any) -> None:
    if isinstance(db, aiosqlite.Connection):
        await sqlite_migrations.run_migrations(db)
    elif asyncpg is not None and isinstance(db, asyncpg.Pool):
        await postgres_migrations.run_migrations(db)
    else:
        raise TypeError(f"Unsupported database handle: {type(db).__name__}")
