"""Repository package for database access."""

from .entities import SqliteEntityRepository

__all__ = [
    "SqliteEntityRepository",
]
