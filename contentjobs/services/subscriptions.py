"""Wire entity lifecycle events to aggregate rebuilds.

Any create, update or delete of a primary entity triggers a full rebuild,
as does the initial-sync-completed signal. With a job queue the rebuild is
enqueued as an ``aggregate-sync`` job; without one it runs inline in the
subscriber task. Either way the publisher never waits for it.
"""
from __future__ import annotations

import logging
from typing import Callable

from contentjobs.jobs.aggregate_sync import AGGREGATE_SYNC_JOB
from contentjobs.jobs.queue import JobQueue
from contentjobs.models import AggregateSyncJobData, JobOptions
from contentjobs.services.aggregate_sync import AggregateSyncManager
from contentjobs.services.message_bus import (
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_UPDATED,
    INITIAL_SYNC_COMPLETED,
    EventMessage,
    MessageBus,
)

logger = logging.getLogger("contentjobs.sync")

LIFECYCLE_EVENTS = (ENTITY_CREATED, ENTITY_UPDATED, ENTITY_DELETED)


def register_aggregate_subscriptions(
    bus: MessageBus,
    manager: AggregateSyncManager,
    queue: JobQueue | None = None,
) -> list[Callable[[], None]]:
    """Subscribe rebuild triggers; returns the unsubscribe callables."""

    async def _rebuild(trigger: str, reason: str) -> None:
        if queue is not None:
            job_id = await queue.enqueue(
                AGGREGATE_SYNC_JOB,
                AggregateSyncJobData(trigger=trigger, reason=reason),
                options=JobOptions(source="aggregate-subscriptions"),
            )
            logger.debug("Enqueued aggregate sync %s (%s)", job_id, reason)
            return
        await manager.sync_aggregates(trigger=trigger)

    async def _on_lifecycle(message: EventMessage) -> None:
        if not manager.is_primary_event(message.payload):
            return
        await _rebuild(
            "entity-event",
            f"{message.event_type} {message.payload.get('entityType')}:{message.payload.get('entityId')}",
        )

    async def _on_initial_sync(message: EventMessage) -> None:
        await _rebuild("initial-sync", message.event_type)

    unsubscribers = [bus.subscribe(event_type, _on_lifecycle) for event_type in LIFECYCLE_EVENTS]
    unsubscribers.append(bus.subscribe(INITIAL_SYNC_COMPLETED, _on_initial_sync))
    logger.info(
        "Aggregate sync subscribed: %s -> %s",
        manager.definition.primary_type,
        manager.definition.aggregate_type,
    )
    return unsubscribers
