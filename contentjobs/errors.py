"""Exception types raised by the entity store and job machinery."""
from __future__ import annotations


class EntityNotFoundError(LookupError):
    def __init__(self, entity_type: str, entity_id: str, label: str = "Entity"):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{label} not found: {entity_type}:{entity_id}")


class EntityConflictError(ValueError):
    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Entity already exists: {entity_type}:{entity_id}")


class JobRejectedError(ValueError):
    """Job data failed validation; the handler never ran."""

    def __init__(self, job_type: str, job_id: str):
        self.job_type = job_type
        self.job_id = job_id
        super().__init__(f"Invalid job data for {job_type} (job {job_id})")


class UnknownJobTypeError(KeyError):
    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(job_type)

    def __str__(self) -> str:
        return f"No handler registered for job type: {self.job_type}"


class GenerationError(RuntimeError):
    pass
