"""OpenTelemetry tracer provider setup for workflow spans."""

from __future__ import annotations

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from CollectIQ_core.config.settings import TelemetrySettings

logger = structlog.get_logger(__name__)


def _exporter(telemetry: TelemetrySettings) -> SpanExporter | None:
    kind = telemetry.exporter.lower()
    if kind == "none":
        return None
    if kind == "otlp":
        return OTLPSpanExporter(endpoint=telemetry.endpoint) if telemetry.endpoint else OTLPSpanExporter()
    return ConsoleSpanExporter()


def configure_tracing(service_name: str, telemetry: TelemetrySettings) -> TracerProvider | None:
    """Install a tracer provider exporting to the configured backend.

    Returns the provider so its owner can flush and shut it down, or ``None``
    when export is disabled or another provider is already installed.
    """
    exporter = _exporter(telemetry)
    if exporter is None:
        return None
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        logger.debug("observability.tracing.already_configured", service=service_name)
        return None
    provider = TracerProvider(
        resource=Resource(attributes={"service.name": service_name}),
        sampler=TraceIdRatioBased(telemetry.sample_ratio),
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


def shutdown_tracing(provider: TracerProvider | None) -> None:
    """Flush pending spans and stop the exporter of ``provider``."""
    if provider is None:
        return
    provider.shutdown()
    logger.debug("observability.tracing.shutdown")


__all__ = ["configure_tracing", "shutdown_tracing"]
