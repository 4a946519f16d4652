"""Handler registry built once at startup and passed to whoever needs it."""
from __future__ import annotations

import logging

from contentjobs.errors import UnknownJobTypeError
from contentjobs.jobs.base import JobHandler

logger = logging.getLogger("contentjobs.jobs")


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        if not job_type:
            raise ValueError("job_type is required")
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for job type: {job_type}")
        self._handlers[job_type] = handler
        logger.info("Registered job handler %s -> %s", job_type, type(handler).__name__)

    def get(self, job_type: str) -> JobHandler:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(job_type)
        return handler

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    @property
    def job_types(self) -> list[str]:
        return sorted(self._handlers)
