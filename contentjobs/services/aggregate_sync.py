"""Aggregate collection sync (e.g. posts -> series).

Every trigger performs the same full rebuild: group the primary entities by
their grouping key, upsert one aggregate per distinct key and delete every
aggregate whose key has no members left. The result depends only on the
primary collection at read time, so repeated or overlapping rebuilds
converge on the same state.

Renaming a grouping key yields a new aggregate id; the old aggregate is
deleted as an orphan even if something links to it.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from contentjobs import config
from contentjobs.entity_ids import aggregate_id, compute_content_hash, slugify
from contentjobs.jobs.progress import ProgressReporter
from contentjobs.models import AggregateSyncResult, Entity
from contentjobs.observability import record_aggregate_sync, start_span
from contentjobs.parsers.frontmatter import extract_frontmatter, render_markdown
from contentjobs.services.entity_service import EntityService

logger = logging.getLogger("contentjobs.sync")


@dataclass(frozen=True)
class AggregateDefinition:
    primary_type: str
    aggregate_type: str
    key_field: str
    id_prefix: str
    # Frontmatter fields on an existing aggregate that survive a rebuild.
    preserved_fields: tuple[str, ...] = ()
    count_field: str = "memberCount"

    @classmethod
    def from_config(cls) -> "AggregateDefinition":
        return cls(
            primary_type=config.AGGREGATE_PRIMARY_TYPE,
            aggregate_type=config.AGGREGATE_ENTITY_TYPE,
            key_field=config.AGGREGATE_KEY_FIELD,
            id_prefix=config.AGGREGATE_ID_PREFIX,
            preserved_fields=tuple(config.AGGREGATE_PRESERVED_FIELDS),
        )


@dataclass
class _Group:
    names: set[str]
    members: int = 0

    @property
    def name(self) -> str:
        return min(self.names)


class AggregateSyncManager:
    def __init__(self, entity_service: EntityService, definition: AggregateDefinition):
        self.entity_service = entity_service
        self.definition = definition

    def grouping_key(self, entity: Entity) -> str:
        raw = entity.metadata.get(self.definition.key_field)
        if raw is None or isinstance(raw, (dict, list)):
            return ""
        return str(raw).strip()

    def group_primary(self, entities: list[Entity]) -> dict[str, _Group]:
        """Map aggregate id -> group. Keys that slugify to the same id share a group."""
        groups: dict[str, _Group] = {}
        for entity in entities:
            key = self.grouping_key(entity)
            if not key:
                continue
            agg_id = aggregate_id(self.definition.id_prefix, key)
            if not agg_id:
                logger.warning(
                    "Skipping %s:%s: grouping key %r has no usable slug",
                    entity.entityType,
                    entity.id,
                    key,
                )
                continue
            group = groups.setdefault(agg_id, _Group(names=set()))
            group.names.add(key)
            group.members += 1
        return groups

    def build_aggregate(self, agg_id: str, group: _Group, existing: Optional[Entity]) -> Entity:
        definition = self.definition
        name = group.name
        owned: dict[str, Any] = {
            "name": name,
            "slug": slugify(name),
            definition.count_field: group.members,
        }
        carried: dict[str, Any] = {}
        if existing is not None and definition.preserved_fields:
            existing_fm, _, _ = extract_frontmatter(existing.content)
            for field in definition.preserved_fields:
                if field in owned:
                    continue
                value = existing_fm.get(field)
                if value is not None and value != "":
                    carried[field] = value
            # YAML can yield dates and other values JSON metadata cannot store.
            carried = json.loads(json.dumps(carried, default=str))

        content = render_markdown({**owned, **carried}, f"# {name}")
        return Entity(
            id=agg_id,
            entityType=definition.aggregate_type,
            content=content,
            contentHash=compute_content_hash(content),
            metadata={**owned, **carried},
            created=existing.created if existing else "",
        )

    async def sync_aggregates(
        self,
        progress: ProgressReporter | None = None,
        *,
        trigger: str = "manual",
    ) -> AggregateSyncResult:
        """Rebuild the aggregate collection from the primary collection."""
        definition = self.definition
        t0 = time.monotonic()
        result = AggregateSyncResult(aggregateType=definition.aggregate_type)

        with start_span(
            "aggregate.sync",
            {"aggregate.type": definition.aggregate_type, "trigger": trigger},
        ):
            primaries = await self.entity_service.list_entities(definition.primary_type)
            result.primaryCount = len(primaries)
            groups = self.group_primary(primaries)
            total_steps = len(groups) + 2
            if progress:
                await progress.report(
                    progress=0,
                    total=total_steps,
                    message=f"Rebuilding {len(groups)} {definition.aggregate_type} aggregate(s)",
                )

            existing_by_id = {
                entity.id: entity
                for entity in await self.entity_service.list_entities(definition.aggregate_type)
            }

            processed: set[str] = set()
            for step, agg_id in enumerate(sorted(groups), start=1):
                existing = existing_by_id.get(agg_id)
                aggregate = self.build_aggregate(agg_id, groups[agg_id], existing)
                if (
                    existing is not None
                    and existing.contentHash == aggregate.contentHash
                    and existing.metadata == aggregate.metadata
                ):
                    result.unchanged += 1
                else:
                    await self.entity_service.upsert_entity(aggregate)
                    result.upserted += 1
                processed.add(agg_id)
                if progress:
                    await progress.report(progress=step, total=total_steps, message=f"Synced {agg_id}")

            # Re-list so aggregates written since the first read are cleaned up too.
            for entity in await self.entity_service.list_entities(definition.aggregate_type):
                if entity.id in processed:
                    continue
                if await self.entity_service.delete_entity(definition.aggregate_type, entity.id):
                    result.deleted += 1
                    logger.info("Deleted orphaned %s aggregate %s", definition.aggregate_type, entity.id)

            result.aggregateIds = sorted(processed)
            result.durationMs = int((time.monotonic() - t0) * 1000)

        if progress:
            await progress.report(
                progress=total_steps,
                total=total_steps,
                message=f"{definition.aggregate_type} sync complete",
            )
        record_aggregate_sync(definition.aggregate_type, upserted=result.upserted, deleted=result.deleted)
        logger.info(
            "Aggregate sync (%s, trigger=%s): %d primaries, %d upserted, %d unchanged, %d deleted in %dms",
            definition.aggregate_type,
            trigger,
            result.primaryCount,
            result.upserted,
            result.unchanged,
            result.deleted,
            result.durationMs,
        )
        return result

    def is_primary_event(self, payload: dict[str, Any]) -> bool:
        return payload.get("entityType") == self.definition.primary_type
