"""Job queue + aggregate sync API."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from contentjobs.errors import JobRejectedError, UnknownJobTypeError
from contentjobs.jobs.aggregate_sync import AGGREGATE_SYNC_JOB
from contentjobs.models import AggregateSyncJobData, CallerContext, JobOptions

logger = logging.getLogger("contentjobs.api")

jobs_router = APIRouter(prefix="/api/jobs", tags=["jobs"])
aggregates_router = APIRouter(prefix="/api/aggregates", tags=["aggregates"])


class EnqueueRequest(BaseModel):
    data: Any = None
    callerContext: CallerContext = Field(default_factory=CallerContext)
    source: str = "api"
    wait: bool = False
    timeoutSeconds: float = Field(30.0, gt=0, le=600)


class AggregateSyncRequest(BaseModel):
    background: bool = True
    trigger: str = "api"
    reason: str = ""


def _get_job_queue(request: Request):
    queue = getattr(request.app.state, "job_queue", None)
    if not queue:
        raise HTTPException(status_code=503, detail="Job queue not initialized")
    return queue


def _get_aggregate_sync(request: Request):
    manager = getattr(request.app.state, "aggregate_sync", None)
    if not manager:
        raise HTTPException(status_code=503, detail="Aggregate sync not initialized")
    return manager


async def _enqueue(queue, job_type: str, data: Any, caller_context: CallerContext, source: str) -> str:
    try:
        return await queue.enqueue(job_type, data, caller_context, JobOptions(source=source))
    except UnknownJobTypeError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobRejectedError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "jobId": exc.job_id, "jobType": exc.job_type},
        ) from exc


@jobs_router.get("")
async def list_jobs(
    request: Request,
    limit: int = Query(20, ge=1, le=200),
    status: str | None = Query(None),
):
    """List recent jobs, newest first."""
    queue = _get_job_queue(request)
    jobs = await queue.list_jobs(limit=limit, status=status)
    return {
        "status": "ok",
        "count": len(jobs),
        "items": jobs,
        "queue": await queue.get_observability_snapshot(),
    }


@jobs_router.get("/{job_id}")
async def get_job(request: Request, job_id: str):
    queue = _get_job_queue(request)
    job = await queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@jobs_router.post("/{job_type}")
async def enqueue_job(request: Request, job_type: str, body: EnqueueRequest):
    """Validate and enqueue a job; with ``wait`` the final snapshot is returned."""
    queue = _get_job_queue(request)
    job_id = await _enqueue(queue, job_type, body.data, body.callerContext, body.source)
    if not body.wait:
        return {"status": "ok", "mode": "background", "jobId": job_id}
    try:
        job = await queue.wait_for(job_id, timeout=body.timeoutSeconds)
    except asyncio.TimeoutError:
        return {"status": "ok", "mode": "background", "jobId": job_id, "timedOut": True}
    return {"status": "ok", "mode": "foreground", "jobId": job_id, "job": job}


@aggregates_router.post("/sync")
async def trigger_aggregate_sync(request: Request, body: AggregateSyncRequest):
    """Rebuild aggregates, either queued as a job or inline."""
    manager = _get_aggregate_sync(request)
    if body.background:
        queue = _get_job_queue(request)
        job_id = await _enqueue(
            queue,
            AGGREGATE_SYNC_JOB,
            AggregateSyncJobData(trigger=body.trigger, reason=body.reason),
            CallerContext(),
            "api",
        )
        return {
            "status": "ok",
            "mode": "background",
            "message": "Aggregate sync queued",
            "jobId": job_id,
        }

    result = await manager.sync_aggregates(trigger=body.trigger)
    return {"status": "ok", "mode": "foreground", "result": result.model_dump()}
