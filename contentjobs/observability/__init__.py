"""Observability helpers."""

from contentjobs.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_job_result,
    record_aggregate_sync,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_job_result",
    "record_aggregate_sync",
]
