"""Audit trail of terminal workflow failures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from CollectIQ_core.utils.errors import ErrorKind, ProblemDetail


@dataclass(frozen=True, slots=True)
class AuditRecord:
    execution_id: str
    card_id: str
    step: str
    error_kind: ErrorKind
    error: ProblemDetail
    recorded_at: datetime
    context: dict[str, Any] = field(default_factory=dict)


class AuditLog(Protocol):
    async def append(self, record: AuditRecord) -> None:
        ...

    async def for_execution(self, execution_id: str) -> list[AuditRecord]:
        ...


class InMemoryAuditLog:
    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self.records.append(record)

    async def for_execution(self, execution_id: str) -> list[AuditRecord]:
        return [record for record in self.records if record.execution_id == execution_id]


__all__ = ["AuditLog", "AuditRecord", "InMemoryAuditLog"]
