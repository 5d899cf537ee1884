"""OpenTelemetry runtime wiring and progression instruments."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Final

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

Attributes = Mapping[str, str | bool | int | float]


@dataclass(frozen=True, slots=True)
class TelemetryConfig:
    """Normalized telemetry configuration used by runtime bootstrap."""

    enabled: bool = False
    service_name: str = "questlog"
    service_namespace: str = "questlog"
    environment: str = "dev"
    otlp_endpoint: str | None = None
    sample_ratio: float = 1.0
    export_metrics: bool = True
    metrics_export_interval_ms: int = 60_000
    headers: dict[str, str] = field(default_factory=dict)


# Counter key -> (instrument name, description)
_COUNTERS: Final[dict[str, tuple[str, str]]] = {
    "events": ("questlog_events_total", "Activity events processed by kind"),
    "points": ("questlog_points_awarded_total", "Points awarded by ledger category"),
    "achievements": ("questlog_achievements_unlocked_total", "Achievements unlocked"),
    "level_ups": ("questlog_level_ups_total", "Level transitions"),
    "challenges": (
        "questlog_challenge_outcomes_total",
        "Challenge instances resolved by outcome",
    ),
    "store_errors": ("questlog_store_errors_total", "Snapshot store operation errors"),
}


class _NoopInstrument:
    """Stands in for counters and histograms while telemetry is off."""

    def add(self, amount: int | float, attributes: Attributes | None = None) -> None:
        pass

    def record(self, amount: int | float, attributes: Attributes | None = None) -> None:
        pass


_NOOP: Final = _NoopInstrument()


class TraceContextFilter(logging.Filter):
    """Attach trace/span identifiers to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = f"{span_context.trace_id:032x}"
            record.span_id = f"{span_context.span_id:016x}"
        else:
            record.trace_id = ""
            record.span_id = ""
        return True


@dataclass(slots=True)
class TelemetrySpan:
    """Thin wrapper so callers never branch on whether tracing is on."""

    _span: Span | None

    def set_attribute(self, key: str, value: str | bool | int | float) -> None:
        if self._span is not None:
            self._span.set_attribute(key, value)

    def record_exception(self, error: BaseException) -> None:
        """Record an exception and mark the span as failed."""
        if self._span is not None:
            self._span.record_exception(error)
            self._span.set_status(Status(StatusCode.ERROR, str(error)))


class TelemetryRuntime:
    """
    Process-wide telemetry for the progression engine.

    When disabled every instrument is a no-op and spans are empty wrappers,
    so the engine records unconditionally.
    """

    def __init__(
        self,
        *,
        enabled: bool,
        tracer: Tracer | None = None,
        tracer_provider: TracerProvider | None = None,
        meter_provider: MeterProvider | None = None,
    ) -> None:
        self._enabled = enabled
        self._tracer = tracer
        self._tracer_provider = tracer_provider
        self._meter_provider = meter_provider
        self._shutdown = False

        if enabled:
            meter = metrics.get_meter("questlog")
            self._counters = {
                key: meter.create_counter(name=name, unit="1", description=description)
                for key, (name, description) in _COUNTERS.items()
            }
            self._latency = meter.create_histogram(
                name="questlog_operation_latency_ms",
                unit="ms",
                description="Engine operation latency",
            )
        else:
            self._counters = {key: _NOOP for key in _COUNTERS}
            self._latency = _NOOP

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @contextmanager
    def start_span(
        self, name: str, *, attributes: Attributes | None = None
    ) -> Iterator[TelemetrySpan]:
        """Start an internal span as the current context."""
        if self._tracer is None:
            yield TelemetrySpan(None)
            return
        with self._tracer.start_as_current_span(name, attributes=attributes) as span:
            yield TelemetrySpan(span)

    def _add(self, key: str, amount: int = 1, **attributes: str) -> None:
        self._counters[key].add(amount, attributes=attributes)

    def record_event(self, *, kind: str) -> None:
        self._add("events", kind=kind)

    def record_points(self, *, category: str, amount: int) -> None:
        self._add("points", amount, category=category)

    def record_achievement(self, *, category: str) -> None:
        self._add("achievements", category=category)

    def record_level_up(self, *, level: int) -> None:
        self._add("level_ups", level=str(level))

    def record_challenge_outcome(self, *, outcome: str) -> None:
        self._add("challenges", outcome=outcome)

    def record_store_error(self, *, operation: str) -> None:
        self._add("store_errors", operation=operation)

    def record_latency(self, *, operation: str, latency_ms: float) -> None:
        self._latency.record(latency_ms, attributes={"operation": operation})

    def install_log_correlation(self) -> None:
        """Add trace ids to records passing through the root logger."""
        if not self._enabled:
            return
        root = logging.getLogger()
        for target in (root, *root.handlers):
            if not any(isinstance(f, TraceContextFilter) for f in target.filters):
                target.addFilter(TraceContextFilter())

    def shutdown(self) -> None:
        """Flush and shut down the providers once."""
        if self._shutdown:
            return
        for provider in (self._tracer_provider, self._meter_provider):
            if provider is not None:
                provider.shutdown()
        self._shutdown = True


_runtime_lock = Lock()
_runtime: TelemetryRuntime | None = None


def get_telemetry() -> TelemetryRuntime:
    """Return the process runtime (disabled until configured)."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = TelemetryRuntime(enabled=False)
        return _runtime


def _tracer_provider(config: TelemetryConfig, resource: Resource) -> TracerProvider:
    provider = TracerProvider(
        resource=resource, sampler=ParentBased(TraceIdRatioBased(config.sample_ratio))
    )
    if config.otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=config.otlp_endpoint.rstrip("/") + "/v1/traces",
            headers=dict(config.headers),
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def _meter_provider(config: TelemetryConfig, resource: Resource) -> MeterProvider:
    if not (config.otlp_endpoint and config.export_metrics):
        return MeterProvider(resource=resource)
    reader = PeriodicExportingMetricReader(
        exporter=OTLPMetricExporter(
            endpoint=config.otlp_endpoint.rstrip("/") + "/v1/metrics",
            headers=dict(config.headers),
        ),
        export_interval_millis=config.metrics_export_interval_ms,
    )
    return MeterProvider(resource=resource, metric_readers=[reader])


def configure_telemetry(config: TelemetryConfig) -> TelemetryRuntime:
    """
    Configure the process runtime.

    An enabled runtime is configured once per process; later calls return
    it unchanged. A disabled config never replaces an existing runtime.
    """
    global _runtime

    with _runtime_lock:
        if _runtime is not None and _runtime.enabled and not _runtime.is_shutdown:
            return _runtime
        if not config.enabled:
            if _runtime is None:
                _runtime = TelemetryRuntime(enabled=False)
            return _runtime

        resource = Resource.create(
            {
                "service.name": config.service_name,
                "service.namespace": config.service_namespace,
                "deployment.environment": config.environment,
            }
        )
        tracer_provider = _tracer_provider(config, resource)
        meter_provider = _meter_provider(config, resource)
        trace.set_tracer_provider(tracer_provider)
        metrics.set_meter_provider(meter_provider)

        _runtime = TelemetryRuntime(
            enabled=True,
            tracer=trace.get_tracer("questlog"),
            tracer_provider=tracer_provider,
            meter_provider=meter_provider,
        )
        _runtime.install_log_correlation()
        logger.info(
            "OpenTelemetry enabled",
            extra={
                "service_name": config.service_name,
                "environment": config.environment,
                "otlp_endpoint": config.otlp_endpoint,
            },
        )
        return _runtime
