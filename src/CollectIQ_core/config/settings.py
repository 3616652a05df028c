"""Configuration system for the card valuation core."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments supported by the platform."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class TelemetrySettings(BaseModel):
    """Configuration block for OpenTelemetry export."""

    exporter: str = Field(default="console", description="Span exporter: console, otlp or none")
    endpoint: str | None = Field(default=None, description="Exporter endpoint")
    sample_ratio: float = Field(default=0.1, ge=0.0, le=1.0)


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Log level for application output")
    correlation_id_header: str = Field(
        default="X-Correlation-ID", description="Header used for trace correlation"
    )
    scrub_fields: Sequence[str] = Field(
        default_factory=lambda: ["api_key", "token", "secret", "authorization"],
        description="Fields that should be redacted in logs",
    )


class MetricsSettings(BaseModel):
    """Prometheus metrics configuration."""

    enabled: bool = True
    path: str = Field(default="/metrics", description="HTTP path for Prometheus metrics")


class ObservabilitySettings(BaseModel):
    """Aggregate observability configuration."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


class RetrySettings(BaseModel):
    """Retry budget shared by every workflow step."""

    max_attempts: int = Field(default=3, ge=1, description="Attempts per step, first call included")
    initial_backoff_seconds: float = Field(default=0.5, ge=0.0)
    max_backoff_seconds: float = Field(default=8.0, ge=0.0)
    jitter_seconds: float = Field(default=0.25, ge=0.0)
    unknown_retries: int = Field(default=1, ge=0, description="Retries granted to unclassified errors")


class WorkflowSettings(BaseModel):
    """Workflow orchestration configuration."""

    retry: RetrySettings = Field(default_factory=RetrySettings)
    aggregation_timeout_seconds: float = Field(default=10.0, gt=0)
    ledger_retention: int = Field(default=1000, ge=1, description="Terminal executions kept in the ledger")


class IdempotencySettings(BaseModel):
    """Duplicate-submission window."""

    ttl_seconds: int = Field(default=600, ge=1, description="Idempotency record lifetime")
    header: str = Field(default="Idempotency-Key")
    alternate_header: str = Field(default="X-Idempotency-Key")


class ExtractionSettings(BaseModel):
    """Vision feature extraction configuration."""

    timeout_seconds: float = Field(default=15.0, gt=0)
    base_url: str | None = Field(default=None, description="Vision service endpoint")


class CircuitBreakerSettings(BaseModel):
    """Per-source circuit breaker thresholds."""

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_seconds: float = Field(default=60.0, ge=0.0)


class ComparablesSourceSettings(BaseModel):
    """HTTP-backed comparable sales source."""

    name: str
    base_url: str
    api_key: SecretStr | None = None
    requests_per_minute: float = Field(default=30.0, gt=0)
    enabled: bool = True


class PricingSettings(BaseModel):
    """Pricing agent configuration."""

    cache_ttl_seconds: int = Field(default=24 * 60 * 60, ge=1)
    source_timeout_seconds: float = Field(default=8.0, gt=0)
    window_days: int = Field(default=14, ge=1, description="Look-back window for comparable sales")
    outlier_threshold: float = Field(
        default=3.5, gt=0, description="Modified z-score above which a sale is discarded"
    )
    summary_enabled: bool = True
    summary_timeout_seconds: float = Field(default=10.0, gt=0)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    sources: list[ComparablesSourceSettings] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_sources(self) -> PricingSettings:
        names = [source.name for source in self.sources]
        if len(names) != len(set(names)):
            raise ValueError("Comparable source names must be unique")
        return self


class AuthenticitySettings(BaseModel):
    """Authenticity agent configuration."""

    threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning_timeout_seconds: float = Field(default=10.0, gt=0)
    reasoning_attempts: int = Field(default=2, ge=1)


class ReasoningSettings(BaseModel):
    """OpenAI-compatible reasoning endpoint."""

    base_url: str = Field(default="https://openrouter.ai/api/v1")
    model: str = Field(default="anthropic/claude-3.5-sonnet")
    api_key: SecretStr | None = None
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=512, ge=1)


class StorageSettings(BaseModel):
    """Record store and message bus timeouts."""

    persist_timeout_seconds: float = Field(default=5.0, gt=0)
    publish_timeout_seconds: float = Field(default=5.0, gt=0)


class AppSettings(BaseSettings):
    """Top-level application settings."""

    environment: Environment = Environment.DEV
    debug: bool = False
    service_name: str = "collectiq-core"
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    authenticity: AuthenticitySettings = Field(default_factory=AuthenticitySettings)
    reasoning: ReasoningSettings = Field(default_factory=ReasoningSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    config_path: Path | None = Field(default=None, description="Optional YAML overrides file")

    model_config = SettingsConfigDict(env_prefix="CIQ_", env_nested_delimiter="__")


ENVIRONMENT_DEFAULTS: Mapping[Environment, dict[str, Any]] = {
    Environment.DEV: {
        "debug": True,
        "telemetry": {"exporter": "console"},
        "observability": {"logging": {"level": "DEBUG"}},
    },
    Environment.STAGING: {
        "telemetry": {"exporter": "otlp", "sample_ratio": 0.25},
    },
    Environment.PROD: {
        "telemetry": {"exporter": "otlp", "sample_ratio": 0.05},
        "workflow": {"retry": {"max_attempts": 4}},
    },
}


def _deep_update(target: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            target[key] = _deep_update(dict(current), value)
        else:
            target[key] = value
    return target


def _load_yaml_overrides(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, Mapping):
        raise RuntimeError(f"Configuration file {path} must contain a mapping")
    return dict(data)


def load_settings(
    environment: str | None = None,
    *,
    config_path: str | Path | None = None,
) -> AppSettings:
    """Load application settings with environment specific defaults applied.

    Precedence, lowest first: field defaults and ``CIQ_`` environment
    variables, environment defaults, then the optional YAML overrides file.
    """
    env_value = (environment or os.getenv("CIQ_ENV", "dev")).lower()
    env = Environment(env_value)
    defaults = ENVIRONMENT_DEFAULTS.get(env, {})
    try:
        base_settings = AppSettings()
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err
    merged = base_settings.model_dump()
    merged = _deep_update(merged, defaults)
    path = Path(config_path) if config_path else base_settings.config_path
    if path is not None:
        merged = _deep_update(merged, _load_yaml_overrides(path))
        merged["config_path"] = path
    merged["environment"] = env
    try:
        return AppSettings.model_validate(merged)
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Cached accessor used by production code."""
    return load_settings()


__all__ = [
    "AppSettings",
    "AuthenticitySettings",
    "CircuitBreakerSettings",
    "ComparablesSourceSettings",
    "ENVIRONMENT_DEFAULTS",
    "Environment",
    "ExtractionSettings",
    "IdempotencySettings",
    "LoggingSettings",
    "MetricsSettings",
    "ObservabilitySettings",
    "PricingSettings",
    "ReasoningSettings",
    "RetrySettings",
    "StorageSettings",
    "TelemetrySettings",
    "WorkflowSettings",
    "get_settings",
    "load_settings",
]
