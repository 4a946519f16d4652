"""In-process job queue hosting registered job handlers.

Jobs move through ``received -> validating -> (rejected | queued ->
processing -> (completed | failed))``. Validation happens inside
``enqueue`` so invalid data never reaches a worker. Workers are asyncio
tasks; there is no persistence and no retry. A failed job keeps its error
message on its snapshot.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

from contentjobs import config
from contentjobs.errors import JobRejectedError
from contentjobs.jobs.base import JobHandler
from contentjobs.jobs.progress import ProgressReporter
from contentjobs.jobs.registry import HandlerRegistry
from contentjobs.models import CallerContext, JobOptions, ProgressEvent
from contentjobs.observability import record_job_result, start_span

logger = logging.getLogger("contentjobs.jobs")

TERMINAL_STATUSES = {"rejected", "completed", "failed"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobQueue:
    def __init__(
        self,
        registry: HandlerRegistry,
        *,
        workers: int | None = None,
        history_limit: int | None = None,
        progress_event_limit: int | None = None,
    ):
        self.registry = registry
        self._worker_count = max(1, workers or config.JOB_WORKERS)
        self._max_history = max(1, history_limit or config.JOB_HISTORY_LIMIT)
        self._max_progress_events = max(1, progress_event_limit or config.JOB_PROGRESS_EVENT_LIMIT)
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._jobs_lock = asyncio.Lock()
        self._jobs: dict[str, dict[str, Any]] = {}
        self._job_order: list[str] = []
        self._parsed: dict[str, BaseModel] = {}
        self._finished: dict[str, asyncio.Event] = {}

    # ── Handler registration ────────────────────────────────────────

    def register_handler(self, job_type: str, handler: JobHandler) -> None:
        self.registry.register(job_type, handler)

    # ── Lifecycle ───────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._workers)

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Job queue already running")
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"contentjobs-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info("Job queue started with %d worker(s)", self._worker_count)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        logger.info("Job queue stopped")

    # ── Enqueue / query ─────────────────────────────────────────────

    async def enqueue(
        self,
        job_type: str,
        data: Any,
        caller_context: CallerContext | None = None,
        options: JobOptions | None = None,
    ) -> str:
        """Validate ``data`` and queue it; raises JobRejectedError on invalid data."""
        handler = self.registry.get(job_type)
        caller_context = caller_context or CallerContext()
        options = options or JobOptions()
        job_id = f"JOB-{uuid.uuid4()}"
        await self._record_received(job_id, job_type, caller_context, options)

        await self._set_status(job_id, "validating")
        parsed = handler.validate_and_parse(data)
        if parsed is None:
            await self._finish(job_id, status="rejected", error="Invalid job data")
            record_job_result(job_type, "rejected", 0)
            raise JobRejectedError(job_type, job_id)

        async with self._jobs_lock:
            self._parsed[job_id] = parsed
            self._jobs[job_id]["data"] = parsed.model_dump()
        await self._set_status(job_id, "queued")
        await self._queue.put(job_id)
        logger.info("Job queued [%s] %s (source=%s)", job_id, job_type, options.source or "unknown")
        return job_id

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        async with self._jobs_lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    async def list_jobs(self, limit: int = 20, status: str | None = None) -> list[dict[str, Any]]:
        """Return latest job snapshots, newest first."""
        async with self._jobs_lock:
            jobs = [self._jobs[job_id] for job_id in self._job_order if job_id in self._jobs]
            if status:
                jobs = [job for job in jobs if job["status"] == status]
            return [copy.deepcopy(job) for job in jobs[: max(1, limit)]]

    async def get_observability_snapshot(self) -> dict[str, Any]:
        async with self._jobs_lock:
            active = [
                copy.deepcopy(job)
                for job_id in self._job_order
                if (job := self._jobs.get(job_id)) and job["status"] not in TERMINAL_STATUSES
            ]
            return {
                "running": self.is_running,
                "workers": self._worker_count,
                "queueDepth": self._queue.qsize(),
                "activeJobCount": len(active),
                "activeJobs": active,
                "trackedJobCount": len(self._jobs),
                "jobTypes": self.registry.job_types,
            }

    async def wait_for(self, job_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Block until the job reaches a terminal status and return its snapshot."""
        async with self._jobs_lock:
            event = self._finished.get(job_id)
            if event is None:
                raise KeyError(job_id)
        await asyncio.wait_for(event.wait(), timeout)
        job = await self.get_job(job_id)
        if job is None:
            # Pruned from history between completion and this read.
            raise KeyError(job_id)
        return job

    # ── Worker ──────────────────────────────────────────────────────

    async def _worker_loop(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._run_job(job_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker %d crashed while running job %s", index, job_id)
            finally:
                self._queue.task_done()

    async def _run_job(self, job_id: str) -> None:
        async with self._jobs_lock:
            job = self._jobs.get(job_id)
            data = self._parsed.pop(job_id, None)
        if job is None or data is None:
            logger.warning("Dropping unknown job %s", job_id)
            return

        job_type = job["jobType"]
        handler = self.registry.get(job_type)
        reporter = ProgressReporter(lambda event: self._record_progress(job_id, event))
        await self._set_status(job_id, "processing", startedAt=_now())

        t0 = time.monotonic()
        with start_span("job.process", {"job.id": job_id, "job.type": job_type}):
            try:
                result = await handler.process(data, job_id, reporter)
            except asyncio.CancelledError:
                await self._finish(job_id, status="failed", error="cancelled")
                raise
            except Exception as exc:
                elapsed = (time.monotonic() - t0) * 1000
                try:
                    handler.on_error(exc, data, job_id)
                except Exception:
                    logger.exception("on_error hook raised for job %s", job_id)
                await self._finish(job_id, status="failed", error=str(exc) or type(exc).__name__)
                record_job_result(job_type, "failed", elapsed)
                return

        elapsed = (time.monotonic() - t0) * 1000
        payload = result.model_dump() if isinstance(result, BaseModel) else result
        await self._finish(job_id, status="completed", result=payload)
        record_job_result(job_type, "completed", elapsed)

    # ── Snapshot bookkeeping ────────────────────────────────────────

    async def _record_received(
        self,
        job_id: str,
        job_type: str,
        caller_context: CallerContext,
        options: JobOptions,
    ) -> None:
        now = _now()
        payload = {
            "id": job_id,
            "jobType": job_type,
            "status": "received",
            "callerContext": caller_context.model_dump(),
            "options": options.model_dump(),
            "data": None,
            "result": None,
            "error": "",
            "progress": {},
            "progressEvents": [],
            "createdAt": now,
            "updatedAt": now,
            "startedAt": "",
            "finishedAt": "",
            "durationMs": 0,
        }
        async with self._jobs_lock:
            self._jobs[job_id] = payload
            self._finished[job_id] = asyncio.Event()
            self._job_order.insert(0, job_id)
            if len(self._job_order) > self._max_history:
                keep: list[str] = []
                for candidate in self._job_order:
                    candidate_job = self._jobs.get(candidate)
                    terminal = candidate_job is not None and candidate_job["status"] in TERMINAL_STATUSES
                    if len(keep) >= self._max_history and terminal:
                        self._jobs.pop(candidate, None)
                        self._finished.pop(candidate, None)
                        continue
                    keep.append(candidate)
                self._job_order = keep

    async def _set_status(self, job_id: str, status: str, **fields: Any) -> None:
        async with self._jobs_lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job["status"] = status
            job["updatedAt"] = _now()
            job.update(fields)
        logger.debug("Job status [%s] %s", job_id, status)

    async def _record_progress(self, job_id: str, event: ProgressEvent) -> None:
        async with self._jobs_lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            snapshot = event.model_dump()
            job["progress"] = snapshot
            events = job.setdefault("progressEvents", [])
            events.append(snapshot)
            if len(events) > self._max_progress_events:
                del events[: len(events) - self._max_progress_events]
            job["updatedAt"] = _now()
        if event.message:
            logger.info("Job progress [%s] %s", job_id, event.message)

    async def _finish(
        self,
        job_id: str,
        *,
        status: str,
        result: Any = None,
        error: str = "",
    ) -> None:
        now = _now()
        async with self._jobs_lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job["status"] = status
            job["updatedAt"] = now
            job["finishedAt"] = now
            if result is not None:
                job["result"] = result
            if error:
                job["error"] = error
            started = job.get("startedAt") or job.get("createdAt")
            try:
                started_at = datetime.fromisoformat(str(started))
                finished_at = datetime.fromisoformat(now)
                job["durationMs"] = max(0, int((finished_at - started_at).total_seconds() * 1000))
            except ValueError:
                job["durationMs"] = 0
            event = self._finished.get(job_id)
            job_type = job["jobType"]
        if event is not None:
            event.set()

        if status == "failed":
            logger.error("Job failed [%s] %s: %s", job_id, job_type, error)
        elif status == "rejected":
            logger.warning("Job rejected [%s] %s", job_id, job_type)
        else:
            logger.info("Job finished [%s] %s status=%s", job_id, job_type, status)
