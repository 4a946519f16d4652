"""Content derivation job: copy an entity into another entity type, or delete it.

Writes are ordered so the target exists before the source can be removed; a
failed target write leaves the source intact and the same request can simply
be run again.

Completion contract: the target write is awaited, but whatever that write
triggers downstream (lifecycle subscribers such as aggregate rebuilds, or
jobs they enqueue) is dispatched without waiting, so a worker never blocks
on its own queue. Those effects complete eventually. Callers that need to
know when a derivation landed subscribe to ``entity:derived``.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Optional

from contentjobs import config
from contentjobs.entity_ids import derive_target_id
from contentjobs.errors import EntityNotFoundError
from contentjobs.jobs.base import JobHandler
from contentjobs.jobs.progress import ProgressReporter
from contentjobs.models import (
    ENTITY_IDENTITY_FIELDS,
    DerivationJobData,
    DerivationResult,
    Entity,
)
from contentjobs.services.entity_service import EntityService
from contentjobs.services.message_bus import ENTITY_DERIVED, MessageBus

CONTENT_DERIVATION_JOB = "content-derivation"


def portable_fields(entity: Entity) -> dict[str, Any]:
    """Content-bearing fields of an entity, without identity or timestamps."""
    fields = entity.model_dump(exclude=set(ENTITY_IDENTITY_FIELDS))
    # The hash is recomputed from content on write.
    fields.pop("contentHash", None)
    return fields


class ContentDerivationJobHandler(JobHandler[DerivationJobData, DerivationResult]):
    job_type = CONTENT_DERIVATION_JOB
    schema = DerivationJobData

    def __init__(
        self,
        entity_service: EntityService,
        *,
        bus: Optional[MessageBus] = None,
        composite_id_types: Iterable[str] | None = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger or logging.getLogger("contentjobs.jobs.derivation"))
        self.entity_service = entity_service
        self.bus = bus
        self.composite_id_types = frozenset(
            config.COMPOSITE_ID_ENTITY_TYPES if composite_id_types is None else composite_id_types
        )

    async def process(
        self,
        data: DerivationJobData,
        job_id: str,
        progress: ProgressReporter,
    ) -> DerivationResult:
        if data.targetEntityType is None:
            return await self._delete_source(data, job_id, progress)
        return await self._derive(data, data.targetEntityType, job_id, progress)

    async def _derive(
        self,
        data: DerivationJobData,
        target_type: str,
        job_id: str,
        progress: ProgressReporter,
    ) -> DerivationResult:
        await progress.report(
            progress=0,
            total=2,
            message=f"Deriving {data.sourceEntityType}:{data.entityId} to {target_type}",
        )

        source = await self.entity_service.get_entity(data.sourceEntityType, data.entityId)
        if source is None:
            raise EntityNotFoundError(data.sourceEntityType, data.entityId, label="Source entity")

        target_id = derive_target_id(
            data.entityId,
            data.sourceEntityType,
            target_type,
            self.composite_id_types,
        )
        fields = portable_fields(source)

        existing = await self.entity_service.get_entity(target_type, target_id)
        if existing is not None:
            merged = existing.model_copy(update=fields)
            result = await self.entity_service.update_entity(merged)
        else:
            result = await self.entity_service.create_entity(
                Entity(id=target_id, entityType=target_type, **fields)
            )

        await progress.report(progress=1, total=2, message=f"Wrote {target_type}:{result.entityId}")

        # Deriving an entity onto itself leaves nothing to delete.
        in_place = (target_type, result.entityId) == (data.sourceEntityType, data.entityId)
        source_deleted = data.options.deleteSource and not in_place
        if source_deleted:
            await self.entity_service.delete_entity(data.sourceEntityType, data.entityId)
        elif data.options.deleteSource:
            self.logger.warning(
                "Not deleting %s:%s: derivation target is the source itself (job=%s)",
                data.sourceEntityType,
                data.entityId,
                job_id,
            )

        if self.bus is not None:
            self.bus.publish(
                ENTITY_DERIVED,
                {
                    "jobId": job_id,
                    "sourceEntityType": data.sourceEntityType,
                    "sourceEntityId": data.entityId,
                    "entityType": target_type,
                    "entityId": result.entityId,
                    "sourceDeleted": source_deleted,
                },
                source=self.job_type,
            )

        await progress.report(
            progress=2,
            total=2,
            message=f"Derived {data.sourceEntityType}:{data.entityId} to {target_type}:{result.entityId}",
        )
        self.logger.info(
            "Derived %s:%s -> %s:%s (job=%s sourceDeleted=%s)",
            data.sourceEntityType,
            data.entityId,
            target_type,
            result.entityId,
            job_id,
            source_deleted,
        )
        return DerivationResult(entityId=result.entityId, success=True)

    async def _delete_source(
        self,
        data: DerivationJobData,
        job_id: str,
        progress: ProgressReporter,
    ) -> DerivationResult:
        await progress.report(
            progress=0,
            total=1,
            message=f"Deleting {data.sourceEntityType}:{data.entityId}",
        )
        removed = await self.entity_service.delete_entity(data.sourceEntityType, data.entityId)
        await progress.report(
            progress=1,
            total=1,
            message=f"{'Deleted' if removed else 'Nothing to delete for'} {data.sourceEntityType}:{data.entityId}",
        )
        self.logger.info(
            "Delete-only derivation for %s:%s removed=%s (job=%s)",
            data.sourceEntityType,
            data.entityId,
            removed,
            job_id,
        )
        return DerivationResult(entityId=data.entityId, success=removed)

    def summarize_data_for_log(self, data: DerivationJobData) -> dict[str, Any]:
        return {
            "entityId": data.entityId,
            "sourceEntityType": data.sourceEntityType,
            "targetEntityType": data.targetEntityType,
        }
