"""OpenTelemetry + Prometheus fallback wiring for the specmap backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from specmap import config

logger = logging.getLogger("specmap.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_tokens_counter: Any | None = None

_prom_enabled = False
_prom_scan_counter: Any | None = None
_prom_scan_latency_hist: Any | None = None
_prom_tokens_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(*, workspace_id: str, **extra: str) -> dict[str, str]:
    labels = {"workspace": workspace_id or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _scan_counter, _scan_latency_hist, _tokens_counter
    global _prom_enabled, _prom_scan_counter, _prom_scan_latency_hist, _prom_tokens_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (SPECMAP_OTEL_ENABLED=false)")
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
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "specmap-backend"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "specmap",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("specmap.backend")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("specmap.backend")

    _scan_counter = meter.create_counter(
        "specmap_scans_total",
        unit="1",
        description="Count of mapping scan runs by kind and result",
    )
    _scan_latency_hist = meter.create_histogram(
        "specmap_scan_duration_ms",
        unit="ms",
        description="Wall time of mapping scan runs",
    )
    _tokens_counter = meter.create_counter(
        "specmap_tokens_total",
        unit="1",
        description="AI tokens consumed by mapping scans",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_scan_counter = Counter(
                "specmap_scans_total",
                "Count of mapping scan runs by kind and result",
                ["kind", "result", "workspace"],
            )
            _prom_scan_latency_hist = Histogram(
                "specmap_scan_duration_ms",
                "Wall time of mapping scan runs",
                ["kind", "result", "workspace"],
            )
            _prom_tokens_counter = Counter(
                "specmap_tokens_total",
                "AI tokens consumed by mapping scans",
                ["model", "direction", "workspace"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except (ImportError, OSError) as exc:
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    if app and _fastapi_instrumentor:
        try:
            _fastapi_instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.warning("FastAPI uninstrumentation failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_scan(kind: str, result: str, duration_ms: float, *, workspace_id: str) -> None:
    labels = {
        "kind": kind or "unknown",
        "result": result or "unknown",
        "workspace_id": workspace_id or "unknown",
    }
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_scan_counter is not None:
        prom = _prom_labels(workspace_id=workspace_id, kind=kind, result=result)
        _prom_scan_counter.labels(**prom).inc()
    if _prom_enabled and _prom_scan_latency_hist is not None:
        prom = _prom_labels(workspace_id=workspace_id, kind=kind, result=result)
        _prom_scan_latency_hist.labels(**prom).observe(max(0.0, float(duration_ms)))


def record_token_usage(*, workspace_id: str, model: str, token_input: int, token_output: int) -> None:
    labels_base = {
        "model": (model or "unknown").strip() or "unknown",
        "workspace_id": workspace_id or "unknown",
    }
    in_tokens = max(0, int(token_input))
    out_tokens = max(0, int(token_output))
    if _enabled and _tokens_counter is not None:
        if in_tokens > 0:
            _tokens_counter.add(in_tokens, {**labels_base, "direction": "input"})
        if out_tokens > 0:
            _tokens_counter.add(out_tokens, {**labels_base, "direction": "output"})

    if _prom_enabled and _prom_tokens_counter is not None:
        prom_base = _prom_labels(workspace_id=workspace_id, model=model)
        if in_tokens > 0:
            _prom_tokens_counter.labels(**{**prom_base, "direction": "input"}).inc(in_tokens)
        if out_tokens > 0:
            _prom_tokens_counter.labels(**{**prom_base, "direction": "output"}).inc(out_tokens)
