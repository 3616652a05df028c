"""Record store holding versioned card records and processing failures."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Protocol

import structlog

from CollectIQ_core.models import AggregatedResult, ProcessingFailure

logger = structlog.get_logger(__name__)


class RecordStore(Protocol):
    """Durable store of card records consulted by polling clients."""

    async def upsert(self, record: AggregatedResult) -> AggregatedResult:
        ...

    async def get(self, card_id: str) -> AggregatedResult | None:
        ...

    async def history(self, card_id: str) -> list[AggregatedResult]:
        ...

    async def record_failure(self, failure: ProcessingFailure) -> None:
        ...

    async def failure(self, card_id: str) -> ProcessingFailure | None:
        ...


class InMemoryRecordStore:
    """Append-only versions per card with per-execution idempotent upserts.

    Writing the same execution twice replaces that execution's version; a new
    execution for the card appends version ``n + 1``. A successful record
    clears any earlier failure marker for the card.
    """

    def __init__(self) -> None:
        self._versions: dict[str, list[AggregatedResult]] = defaultdict(list)
        self._failures: dict[str, ProcessingFailure] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, record: AggregatedResult) -> AggregatedResult:
        async with self._lock:
            versions = self._versions[record.card_id]
            for index, existing in enumerate(versions):
                if existing.execution_id == record.execution_id:
                    stored = record.model_copy(update={"version": existing.version})
                    versions[index] = stored
                    logger.debug(
                        "records.upsert.replaced",
                        card_id=record.card_id,
                        execution_id=record.execution_id,
                        version=stored.version,
                    )
                    return stored
            stored = record.model_copy(update={"version": len(versions) + 1})
            versions.append(stored)
            failure = self._failures.get(record.card_id)
            if failure is not None and failure.failed_at <= record.completed_at:
                self._failures.pop(record.card_id, None)
            logger.info(
                "records.upsert.created",
                card_id=record.card_id,
                execution_id=record.execution_id,
                version=stored.version,
                status=stored.status.value,
            )
            return stored

    async def get(self, card_id: str) -> AggregatedResult | None:
        versions = self._versions.get(card_id)
        return versions[-1] if versions else None

    async def history(self, card_id: str) -> list[AggregatedResult]:
        return list(self._versions.get(card_id, ()))

    async def record_failure(self, failure: ProcessingFailure) -> None:
        async with self._lock:
            self._failures[failure.card_id] = failure

    async def failure(self, card_id: str) -> ProcessingFailure | None:
        return self._failures.get(card_id)


__all__ = ["InMemoryRecordStore", "RecordStore"]
