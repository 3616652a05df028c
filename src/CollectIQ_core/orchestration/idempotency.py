"""Idempotency guard deduplicating create and revalue submissions.

A client-supplied key maps to exactly one execution for the lifetime of its
record. The store exposes a single atomic primitive, ``insert_if_absent``;
the guard never reads then writes, so concurrent submissions of one key
cannot both be admitted.
"""

from __future__ import annotations

import asyncio
import heapq
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

import structlog

from CollectIQ_core.observability.metrics import record_idempotency_decision
from CollectIQ_core.utils.errors import DuplicateKeyConflict
from CollectIQ_core.utils.identifiers import canonical_hash, new_execution_id
from CollectIQ_core.utils.time import Clock, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 600


@dataclass(frozen=True, slots=True)
class IdempotencyRecord:
    key: str
    request_hash: str
    execution_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class Admission:
    """Guard decision: a fresh execution, or the one already bound to the key."""

    admitted: bool
    execution_id: str


class IdempotencyStore(Protocol):
    async def insert_if_absent(self, record: IdempotencyRecord, *, now: datetime) -> IdempotencyRecord:
        """Store ``record`` unless a live record holds its key.

        Returns the record that holds the key afterwards: ``record`` itself
        when it was written, otherwise the live record that won.
        """
        ...


class InMemoryIdempotencyStore:
    """Process-local store; expired records are evicted on insert."""

    def __init__(self) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._expiries: list[tuple[datetime, str]] = []
        self._lock = asyncio.Lock()

    async def insert_if_absent(self, record: IdempotencyRecord, *, now: datetime) -> IdempotencyRecord:
        async with self._lock:
            self._evict_expired(now)
            existing = self._records.get(record.key)
            if existing is not None:
                return existing
            self._records[record.key] = record
            heapq.heappush(self._expiries, (record.expires_at, record.key))
            return record

    def _evict_expired(self, now: datetime) -> None:
        evicted = 0
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            current = self._records.get(key)
            # A key re-admitted after expiry carries a newer heap entry.
            if current is not None and current.expires_at == expires_at:
                del self._records[key]
                evicted += 1
        if evicted:
            logger.debug("idempotency.evicted", count=evicted, remaining=len(self._records))

    def __len__(self) -> int:
        return len(self._records)


def hash_request(payload: Mapping[str, Any]) -> str:
    """Canonical hash of a submission payload."""
    return canonical_hash(payload)


class IdempotencyGuard:
    def __init__(
        self,
        store: IdempotencyStore,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = new_execution_id,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._id_factory = id_factory

    async def admit(self, key: str, request_hash: str, *, execution_id: str | None = None) -> Admission:
        """Admit a submission or resolve it to its existing execution.

        ``execution_id`` binds a newly admitted key to an execution that already
        exists instead of a fresh one.

        Raises:
            DuplicateKeyConflict: If ``key`` is live for a different payload.
        """
        now = self._clock()
        candidate = IdempotencyRecord(
            key=key,
            request_hash=request_hash,
            execution_id=execution_id or self._id_factory(),
            created_at=now,
            expires_at=now + self._ttl,
        )
        winner = await self._store.insert_if_absent(candidate, now=now)
        if winner is candidate:
            record_idempotency_decision("admitted")
            logger.info("idempotency.admitted", key=key, execution_id=winner.execution_id)
            return Admission(admitted=True, execution_id=winner.execution_id)
        if winner.request_hash != request_hash:
            record_idempotency_decision("conflict")
            logger.warning(
                "idempotency.conflict",
                key=key,
                execution_id=winner.execution_id,
            )
            raise DuplicateKeyConflict(key, execution_id=winner.execution_id)
        record_idempotency_decision("duplicate")
        logger.info("idempotency.duplicate", key=key, execution_id=winner.execution_id)
        return Admission(admitted=False, execution_id=winner.execution_id)


__all__ = [
    "Admission",
    "IdempotencyGuard",
    "IdempotencyRecord",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "hash_request",
]
