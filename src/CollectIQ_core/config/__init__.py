"""Lightweight configuration package exports."""

from __future__ import annotations

from .settings import (
    AppSettings,
    AuthenticitySettings,
    ComparablesSourceSettings,
    Environment,
    LoggingSettings,
    PricingSettings,
    RetrySettings,
    TelemetrySettings,
    get_settings,
    load_settings,
)

__all__ = [
    "AppSettings",
    "AuthenticitySettings",
    "ComparablesSourceSettings",
    "Environment",
    "LoggingSettings",
    "PricingSettings",
    "RetrySettings",
    "TelemetrySettings",
    "get_settings",
    "load_settings",
]
