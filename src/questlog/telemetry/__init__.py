"""Telemetry facade for questlog instrumentation."""

from .runtime import (
    TelemetryConfig,
    TelemetryRuntime,
    TelemetrySpan,
    configure_telemetry,
    get_telemetry,
)

__all__ = [
    "TelemetryConfig",
    "TelemetryRuntime",
    "TelemetrySpan",
    "configure_telemetry",
    "get_telemetry",
]
