"""Contract every background job type implements.

A handler validates raw job data against its pydantic schema, processes the
parsed data while reporting progress, and exposes a diagnostic hook the
queue calls after a failure.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from contentjobs.jobs.progress import ProgressReporter

DataT = TypeVar("DataT", bound=BaseModel)
ResultT = TypeVar("ResultT", bound=BaseModel)


class JobHandler(ABC, Generic[DataT, ResultT]):
    job_type: ClassVar[str] = ""
    schema: ClassVar[type[BaseModel]]

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"contentjobs.jobs.{self.job_type or type(self).__name__}")

    def validate_and_parse(self, raw: Any) -> Optional[DataT]:
        """Return parsed data, or None when ``raw`` does not satisfy the schema."""
        try:
            if isinstance(raw, self.schema):
                return raw  # type: ignore[return-value]
            return self.schema.model_validate(raw)  # type: ignore[return-value]
        except ValidationError as exc:
            self.logger.warning(
                "Invalid %s job data: %s (errors=%s)",
                self.job_type,
                raw if isinstance(raw, dict) else type(raw).__name__,
                exc.errors(include_url=False),
            )
            return None

    @abstractmethod
    async def process(self, data: DataT, job_id: str, progress: ProgressReporter) -> ResultT:
        ...

    def on_error(self, error: BaseException, data: DataT, job_id: str) -> None:
        try:
            self.logger.error(
                "%s job %s failed: %s (data=%s)",
                self.job_type,
                job_id,
                error,
                self.summarize_data_for_log(data),
            )
        except Exception:  # noqa: BLE001
            pass

    def summarize_data_for_log(self, data: DataT) -> dict[str, Any]:
        return data.model_dump() if isinstance(data, BaseModel) else {}
