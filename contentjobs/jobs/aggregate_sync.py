"""Job wrapper running a full aggregate rebuild through the job queue."""
from __future__ import annotations

import logging
from typing import Optional

from contentjobs.jobs.base import JobHandler
from contentjobs.jobs.progress import ProgressReporter
from contentjobs.models import AggregateSyncJobData, AggregateSyncResult
from contentjobs.services.aggregate_sync import AggregateSyncManager

AGGREGATE_SYNC_JOB = "aggregate-sync"


class AggregateSyncJobHandler(JobHandler[AggregateSyncJobData, AggregateSyncResult]):
    job_type = AGGREGATE_SYNC_JOB
    schema = AggregateSyncJobData

    def __init__(self, manager: AggregateSyncManager, logger: Optional[logging.Logger] = None):
        super().__init__(logger or logging.getLogger("contentjobs.jobs.aggregate_sync"))
        self.manager = manager

    async def process(
        self,
        data: AggregateSyncJobData,
        job_id: str,
        progress: ProgressReporter,
    ) -> AggregateSyncResult:
        self.logger.debug("Aggregate sync job %s (trigger=%s reason=%s)", job_id, data.trigger, data.reason)
        return await self.manager.sync_aggregates(progress, trigger=data.trigger)
