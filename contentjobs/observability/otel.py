"""Tracing and metrics for job runs and aggregate rebuilds.

OpenTelemetry is used when enabled and installed; a Prometheus endpoint can
be exposed alongside it. Every helper is a no-op until ``initialize`` has
set things up, so callers never check whether telemetry is on.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from contentjobs import config

logger = logging.getLogger("contentjobs.observability")

JOBS_TOTAL = "contentjobs_jobs_total"
JOB_DURATION_MS = "contentjobs_job_duration_ms"
AGGREGATE_CHANGES_TOTAL = "contentjobs_aggregate_changes_total"

_DESCRIPTIONS = {
    JOBS_TOTAL: "Finished jobs by type and terminal status",
    JOB_DURATION_MS: "Job processing latency",
    AGGREGATE_CHANGES_TOTAL: "Aggregate entities written or removed by rebuilds",
}


class _Telemetry:
    def __init__(self) -> None:
        self.initialized = False
        self.tracer: Any | None = None
        self.providers: list[Any] = []
        self.instrumentor: Any | None = None
        self.otel: dict[str, Any] = {}
        self.prom: dict[str, Any] = {}

    @property
    def enabled(self) -> bool:
        return self.tracer is not None


_state = _Telemetry()


def _otlp_url(base: str, signal: str) -> str | None:
    base = (base or "").strip().rstrip("/")
    if not base:
        return None
    path = f"/v1/{signal}"
    if base.endswith(path):
        return base
    if base.endswith("/v1"):
        base = base[: -len("/v1")]
    return f"{base}{path}"


def _label(value: str | None) -> str:
    return (value or "").strip() or "unknown"


def _start_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server
    except ImportError as exc:
        logger.warning("prometheus_client unavailable: %s", exc)
        return
    try:
        start_http_server(config.PROM_PORT)
    except OSError as exc:
        logger.warning("Prometheus endpoint not started on port %s: %s", config.PROM_PORT, exc)
        return
    _state.prom = {
        JOBS_TOTAL: Counter(JOBS_TOTAL, _DESCRIPTIONS[JOBS_TOTAL], ["job_type", "status"]),
        JOB_DURATION_MS: Histogram(JOB_DURATION_MS, _DESCRIPTIONS[JOB_DURATION_MS], ["job_type"]),
        AGGREGATE_CHANGES_TOTAL: Counter(
            AGGREGATE_CHANGES_TOTAL,
            _DESCRIPTIONS[AGGREGATE_CHANGES_TOTAL],
            ["aggregate_type", "change"],
        ),
    }
    logger.info("Prometheus metrics on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    if _state.initialized:
        if app is not None and _state.instrumentor is not None:
            _state.instrumentor.instrument_app(app)
        return
    _state.initialized = True

    if not config.OTEL_ENABLED:
        logger.info("Telemetry disabled (CONTENTJOBS_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry packages unavailable: %s", exc)
        return

    resource = Resource.create({"service.name": config.OTEL_SERVICE_NAME or "contentjobs"})

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=_otlp_url(config.OTEL_ENDPOINT, "traces")))
    )
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=_otlp_url(config.OTEL_ENDPOINT, "metrics"))
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("contentjobs")

    _state.otel = {
        JOBS_TOTAL: meter.create_counter(JOBS_TOTAL, unit="1", description=_DESCRIPTIONS[JOBS_TOTAL]),
        JOB_DURATION_MS: meter.create_histogram(
            JOB_DURATION_MS, unit="ms", description=_DESCRIPTIONS[JOB_DURATION_MS]
        ),
        AGGREGATE_CHANGES_TOTAL: meter.create_counter(
            AGGREGATE_CHANGES_TOTAL, unit="1", description=_DESCRIPTIONS[AGGREGATE_CHANGES_TOTAL]
        ),
    }
    _state.providers = [meter_provider, tracer_provider]
    _state.tracer = trace.get_tracer("contentjobs")
    _state.instrumentor = FastAPIInstrumentor()
    if app is not None:
        _state.instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info("Telemetry exporting to %s", config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    if not _state.initialized:
        return
    if app is not None and _state.instrumentor is not None:
        try:
            _state.instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in _state.providers:
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _state.providers = []
    _state.tracer = None
    _state.otel = {}


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _state.enabled:
        yield None
        return
    with _state.tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_job_result(job_type: str, status: str, duration_ms: float) -> None:
    job_type, status = _label(job_type), _label(status)
    duration = max(0.0, float(duration_ms))
    if JOBS_TOTAL in _state.otel:
        _state.otel[JOBS_TOTAL].add(1, {"job_type": job_type, "status": status})
        _state.otel[JOB_DURATION_MS].record(duration, {"job_type": job_type})
    if JOBS_TOTAL in _state.prom:
        _state.prom[JOBS_TOTAL].labels(job_type=job_type, status=status).inc()
        _state.prom[JOB_DURATION_MS].labels(job_type=job_type).observe(duration)


def record_aggregate_sync(aggregate_type: str, *, upserted: int, deleted: int) -> None:
    aggregate_type = _label(aggregate_type)
    for change, count in (("upserted", upserted), ("deleted", deleted)):
        count = max(0, int(count))
        if not count:
            continue
        if AGGREGATE_CHANGES_TOTAL in _state.otel:
            _state.otel[AGGREGATE_CHANGES_TOTAL].add(count, {"aggregate_type": aggregate_type, "change": change})
        if AGGREGATE_CHANGES_TOTAL in _state.prom:
            _state.prom[AGGREGATE_CHANGES_TOTAL].labels(aggregate_type=aggregate_type, change=change).inc(count)
