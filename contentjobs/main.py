"""contentjobs FastAPI application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from contentjobs import config
from contentjobs.db import connection, migrations
from contentjobs.jobs.aggregate_sync import AggregateSyncJobHandler
from contentjobs.jobs.derivation import ContentDerivationJobHandler
from contentjobs.jobs.generation import PostGenerationJobHandler
from contentjobs.jobs.queue import JobQueue
from contentjobs.jobs.registry import HandlerRegistry
from contentjobs.observability import initialize as initialize_observability, shutdown as shutdown_observability
from contentjobs.routers.jobs import aggregates_router, jobs_router
from contentjobs.services.aggregate_sync import AggregateDefinition, AggregateSyncManager
from contentjobs.services.ai_generation import HttpTemplateGenerator
from contentjobs.services.entity_service import EntityService
from contentjobs.services.message_bus import INITIAL_SYNC_COMPLETED, MessageBus
from contentjobs.services.subscriptions import register_aggregate_subscriptions

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger("contentjobs")


def build_job_queue(
    entity_service: EntityService,
    bus: MessageBus,
    aggregate_sync: AggregateSyncManager,
) -> JobQueue:
    registry = HandlerRegistry()
    queue = JobQueue(registry)
    queue.register_handler(
        ContentDerivationJobHandler.job_type,
        ContentDerivationJobHandler(entity_service, bus=bus),
    )
    queue.register_handler(
        AggregateSyncJobHandler.job_type,
        AggregateSyncJobHandler(aggregate_sync),
    )
    queue.register_handler(
        PostGenerationJobHandler.job_type,
        PostGenerationJobHandler(entity_service, HttpTemplateGenerator()),
    )
    return queue


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("contentjobs starting up")
    initialize_observability(app)

    # 1. Database + schema
    db = await connection.open_connection()
    await migrations.run_migrations(db)
    app.state.db = db

    # 2. Services
    bus = MessageBus()
    entity_service = EntityService.for_connection(db, bus)
    aggregate_sync = AggregateSyncManager(entity_service, AggregateDefinition.from_config())
    app.state.message_bus = bus
    app.state.entity_service = entity_service
    app.state.aggregate_sync = aggregate_sync

    # 3. Job queue
    queue = build_job_queue(entity_service, bus, aggregate_sync)
    await queue.start()
    app.state.job_queue = queue

    # 4. Aggregate rebuild triggers
    app.state.unsubscribers = register_aggregate_subscriptions(bus, aggregate_sync, queue)

    async def _announce_initial_sync() -> None:
        delay = max(0, int(config.STARTUP_SYNC_DELAY_SECONDS))
        if delay > 0:
            await asyncio.sleep(delay)
        bus.publish(INITIAL_SYNC_COMPLETED, {"trigger": "startup"}, source="contentjobs")

    # Keep reference to cancel on shutdown.
    app.state.startup_task = asyncio.create_task(_announce_initial_sync())

    yield

    logger.info("contentjobs shutting down")

    app.state.startup_task.cancel()
    try:
        await app.state.startup_task
    except asyncio.CancelledError:
        pass

    for unsubscribe in app.state.unsubscribers:
        unsubscribe()
    await queue.stop()
    await bus.drain()
    shutdown_observability(app)
    await connection.close_connection(db)


app = FastAPI(
    title="contentjobs API",
    description="Background jobs for content derivation, generation and aggregate sync",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(jobs_router)
app.include_router(aggregates_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    queue = getattr(app.state, "job_queue", None)
    return {
        "status": "ok",
        "db": "connected" if getattr(app.state, "db", None) is not None else "disconnected",
        "queue": "running" if queue is not None and queue.is_running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("contentjobs.main:app", host=config.HOST, port=config.PORT)
