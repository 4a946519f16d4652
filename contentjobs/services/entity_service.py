"""Typed entity store on top of the entity repository.

Every write recomputes ``contentHash`` from ``content`` and publishes a
lifecycle event. The write itself is awaited; event subscribers are not.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from contentjobs.db.factory import get_entity_repository
from contentjobs.entity_ids import compute_content_hash
from contentjobs.errors import EntityNotFoundError
from contentjobs.models import Entity, WriteResult
from contentjobs.services.message_bus import (
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_UPDATED,
    MessageBus,
)

logger = logging.getLogger("contentjobs.entities")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EntityService:
    def __init__(self, repository: Any, bus: MessageBus | None = None):
        self.repo = repository
        self.bus = bus

    @classmethod
    def for_connection(cls, db: Any, bus: MessageBus | None = None) -> "EntityService":
        return cls(get_entity_repository(db), bus)

    def _publish(self, event_type: str, entity: Entity) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            event_type,
            {
                "entityType": entity.entityType,
                "entityId": entity.id,
                "entity": entity.model_dump(),
            },
            source="entity-service",
        )

    def _prepare(self, entity: Entity, *, created: str | None = None) -> Entity:
        now = _now()
        return entity.model_copy(
            update={
                "contentHash": compute_content_hash(entity.content),
                "created": created or entity.created or now,
                "updated": now,
            }
        )

    async def get_entity(self, entity_type: str, entity_id: str) -> Entity | None:
        row = await self.repo.get(entity_type, entity_id)
        return Entity(**row) if row else None

    async def list_entities(
        self,
        entity_type: str,
        filters: dict | None = None,
        sort: list[tuple[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Entity]:
        rows = await self.repo.list(entity_type, filters=filters, sort=sort, limit=limit, offset=offset)
        return [Entity(**row) for row in rows]

    async def create_entity(self, entity: Entity) -> WriteResult:
        """Insert a new entity; raises EntityConflictError when the id is taken."""
        prepared = self._prepare(entity)
        await self.repo.create(prepared.model_dump())
        logger.debug("Created entity %s:%s", prepared.entityType, prepared.id)
        self._publish(ENTITY_CREATED, prepared)
        return WriteResult(entityId=prepared.id, created=True)

    async def update_entity(self, entity: Entity) -> WriteResult:
        existing = await self.get_entity(entity.entityType, entity.id)
        if existing is None:
            raise EntityNotFoundError(entity.entityType, entity.id)
        prepared = self._prepare(entity, created=existing.created)
        await self.repo.update(prepared.model_dump())
        logger.debug("Updated entity %s:%s", prepared.entityType, prepared.id)
        self._publish(ENTITY_UPDATED, prepared)
        return WriteResult(entityId=prepared.id, created=False)

    async def upsert_entity(self, entity: Entity) -> WriteResult:
        existing = await self.get_entity(entity.entityType, entity.id)
        prepared = self._prepare(entity, created=existing.created if existing else None)
        await self.repo.upsert(prepared.model_dump())
        self._publish(ENTITY_UPDATED if existing else ENTITY_CREATED, prepared)
        return WriteResult(entityId=prepared.id, created=existing is None)

    async def delete_entity(self, entity_type: str, entity_id: str) -> bool:
        existing = await self.get_entity(entity_type, entity_id)
        if existing is None:
            return False
        removed = await self.repo.delete(entity_type, entity_id)
        if removed:
            logger.debug("Deleted entity %s:%s", entity_type, entity_id)
            self._publish(ENTITY_DELETED, existing)
        return removed
