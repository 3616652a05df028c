"""Observability helpers for the FastAPI gateway and background workflows."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from prometheus_client import make_asgi_app

from ..utils.logging import configure_logging
from .tracing import configure_tracing, shutdown_tracing

if TYPE_CHECKING:  # pragma: no cover - import hints only
    from fastapi import FastAPI
    from opentelemetry.sdk.trace import TracerProvider

    from CollectIQ_core.config.settings import AppSettings

__all__ = ["setup_observability", "shutdown_tracing"]

logger = structlog.get_logger(__name__)


def setup_observability(app: FastAPI, settings: AppSettings) -> TracerProvider | None:
    """Configure logging, tracing and the Prometheus endpoint for the app.

    Returns the tracer provider installed here, which the caller shuts down.
    """
    configure_logging(settings.observability.logging)
    provider = configure_tracing(settings.service_name, settings.telemetry)
    if settings.observability.metrics.enabled:
        app.mount(settings.observability.metrics.path, make_asgi_app())
    logger.info(
        "observability.configured",
        service=settings.service_name,
        exporter=settings.telemetry.exporter,
        tracing_installed=provider is not None,
        metrics=settings.observability.metrics.enabled,
    )
    return provider
