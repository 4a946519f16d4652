"""Progress side-channel for long-running jobs.

Reports flow to a callback (the job queue records them on the job snapshot).
Progress never moves backwards: a lower value than the last one reported is
clamped. Callback failures are logged and dropped; job logic never depends
on whether a report was observed.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from contentjobs.models import ProgressEvent

logger = logging.getLogger("contentjobs.progress")

ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]


class ProgressReporter:
    def __init__(self, callback: ProgressCallback):
        self._callback = callback
        self._last_ratio = 0.0
        self._last_progress = 0.0

    async def report(self, *, progress: float, total: float | None = None, message: str = "") -> None:
        progress = self._clamp(progress, total)
        event = ProgressEvent(progress=progress, total=total, message=message)
        try:
            await self._callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress callback failed: %s", exc)

    def _clamp(self, progress: float, total: float | None) -> float:
        if total:
            ratio = progress / total
            if ratio < self._last_ratio:
                progress = self._last_ratio * total
            else:
                self._last_ratio = ratio
            self._last_progress = progress
            return progress
        if progress < self._last_progress:
            return self._last_progress
        self._last_progress = progress
        return progress
