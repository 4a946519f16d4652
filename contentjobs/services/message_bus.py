"""In-process event bus for entity lifecycle notifications.

Subscribers run as background tasks: ``publish`` never waits for them and a
failing subscriber is logged without reaching the publisher. ``drain`` waits
for everything delivered so far (shutdown and tests).
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger("contentjobs.bus")

ENTITY_CREATED = "entity:created"
ENTITY_UPDATED = "entity:updated"
ENTITY_DELETED = "entity:deleted"
ENTITY_DERIVED = "entity:derived"
INITIAL_SYNC_COMPLETED = "sync:initial:completed"


@dataclass
class EventMessage:
    event_type: str
    payload: dict[str, Any]
    source: str = ""
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


EventHandler = Callable[[EventMessage], Awaitable[None]]


class MessageBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it again."""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscriber_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    def publish(self, event_type: str, payload: dict[str, Any], *, source: str = "") -> EventMessage:
        message = EventMessage(event_type=event_type, payload=payload, source=source)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return message
        loop = asyncio.get_running_loop()
        for handler in handlers:
            task = loop.create_task(self._deliver(handler, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        logger.debug("Published %s to %d subscriber(s)", event_type, len(handlers))
        return message

    async def drain(self) -> None:
        """Wait for in-flight deliveries, including ones they publish in turn."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, handler: EventHandler, message: EventMessage) -> None:
        try:
            await handler(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Event subscriber failed for %s (correlation=%s)",
                message.event_type,
                message.correlation_id,
            )
