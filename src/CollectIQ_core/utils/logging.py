"""Structured logging with workflow context and secret redaction.

Both structlog events and stdlib records (httpx, uvicorn) end up as one JSON
object per line on stdout. Every line carries the workflow context bound for
the current task: the correlation id and, inside an execution, the execution
and card ids. Configured secret fields are redacted at any nesting depth.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Collection, Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from types import MappingProxyType
from typing import Any

import structlog

from CollectIQ_core.config.settings import LoggingSettings

REDACTED = "***"

_log_context: ContextVar[Mapping[str, str]] = ContextVar(
    "collectiq_log_context", default=MappingProxyType({})
)

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def redact(value: Any, fields: Collection[str]) -> Any:
    """Return ``value`` with every mapping key listed in ``fields`` masked."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in fields else redact(item, fields)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item, fields) for item in value]
    return value


# ------------------------------------------------------------------
# Workflow context
# ------------------------------------------------------------------
def current_log_context() -> dict[str, str]:
    return dict(_log_context.get())


def bind_log_context(**values: str) -> Token[Mapping[str, str]]:
    """Add ``values`` to the context of the current task; undo with the token."""
    merged = {**_log_context.get(), **values}
    return _log_context.set(MappingProxyType(merged))


def reset_log_context(token: Token[Mapping[str, str]]) -> None:
    _log_context.reset(token)


@contextmanager
def log_context(**values: str) -> Iterator[dict[str, str]]:
    token = bind_log_context(**values)
    try:
        yield current_log_context()
    finally:
        reset_log_context(token)


@contextmanager
def workflow_scope(execution_id: str, card_id: str) -> Iterator[dict[str, str]]:
    """Tag every log line of one execution; the execution id doubles as correlation id."""
    with log_context(correlation_id=execution_id, execution_id=execution_id, card_id=card_id) as bound:
        yield bound


def get_correlation_id() -> str | None:
    return _log_context.get().get("correlation_id")


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------
class JsonFormatter(logging.Formatter):
    """Render stdlib records as JSON lines matching the structlog output."""

    def __init__(self, *, scrub_fields: Collection[str] = ()) -> None:
        super().__init__()
        self._fields = frozenset(field.lower() for field in scrub_fields)

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_log_context.get(),
        }
        line.update((key, value) for key, value in vars(record).items() if key not in _RECORD_ATTRIBUTES)
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(redact(line, self._fields), default=str, sort_keys=True)


def add_log_context(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Structlog processor merging the bound workflow context into the event."""
    for key, value in _log_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


class RedactFields:
    """Structlog processor masking secret fields."""

    def __init__(self, fields: Collection[str]) -> None:
        self._fields = frozenset(field.lower() for field in fields)

    def __call__(self, _: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        return redact(event_dict, self._fields)


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Route structlog and stdlib logging to JSON lines on stdout.

    Safe to call repeatedly: the handler installed by an earlier call is
    replaced and handlers installed by others are left alone.
    """
    settings = settings or LoggingSettings()
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(scrub_fields=settings.scrub_fields))
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            add_log_context,
            RedactFields(settings.scrub_fields),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True, default=str),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


__all__ = [
    "JsonFormatter",
    "REDACTED",
    "RedactFields",
    "add_log_context",
    "bind_log_context",
    "configure_logging",
    "current_log_context",
    "get_correlation_id",
    "log_context",
    "redact",
    "reset_log_context",
    "workflow_scope",
]
