"""TTL cache of fused pricing results keyed by card fingerprint."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import MutableMapping
from datetime import datetime, timedelta

from attrs import define, field
from pydantic import Field

from CollectIQ_core.models import CoreModel, PricingPayload
from CollectIQ_core.observability.metrics import record_cache_lookup, set_cache_size
from CollectIQ_core.utils.time import Clock, utc_now


class PricingCacheEntry(CoreModel):
    fingerprint: str
    fused_result: PricingPayload
    sources_used: tuple[str, ...]
    comps_count: int = Field(ge=0)
    cached_at: datetime
    ttl_seconds: int = Field(ge=1)

    @property
    def expires_at(self) -> datetime:
        return self.cached_at + timedelta(seconds=self.ttl_seconds)

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


@define(slots=True)
class PricingCache:
    """Bounded LRU of pricing entries; expired entries are evicted on read.

    Writers for the same fingerprint are last-writer-wins. ``cached_at`` is
    forced to strictly increase across overwrites of one fingerprint even when
    the clock does not move between writes.
    """

    ttl_seconds: int = 24 * 60 * 60
    max_entries: int = 10_000
    clock: Clock = utc_now
    _entries: MutableMapping[str, PricingCacheEntry] = field(factory=OrderedDict, init=False)
    _lock: asyncio.Lock = field(factory=asyncio.Lock, init=False)

    async def get(self, fingerprint: str) -> PricingCacheEntry | None:
        """Return the live entry for ``fingerprint`` or ``None``."""
        async with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                record_cache_lookup(hit=False)
                return None
            if not entry.is_fresh(self.clock()):
                self._entries.pop(fingerprint, None)
                record_cache_lookup(hit=False)
                set_cache_size(len(self._entries))
                return None
            self._entries.move_to_end(fingerprint)
            record_cache_lookup(hit=True)
            return entry

    async def put(self, fingerprint: str, result: PricingPayload) -> PricingCacheEntry:
        """Store ``result`` for ``fingerprint``, replacing any previous entry."""
        async with self._lock:
            cached_at = self.clock()
            previous = self._entries.get(fingerprint)
            if previous is not None and cached_at <= previous.cached_at:
                cached_at = previous.cached_at + timedelta(microseconds=1)
            entry = PricingCacheEntry(
                fingerprint=fingerprint,
                fused_result=result,
                sources_used=result.sources,
                comps_count=result.comps_count,
                cached_at=cached_at,
                ttl_seconds=self.ttl_seconds,
            )
            self._entries[fingerprint] = entry
            self._entries.move_to_end(fingerprint)
            self._prune()
            set_cache_size(len(self._entries))
            return entry

    async def invalidate(self, fingerprint: str) -> bool:
        """Drop one fingerprint; returns whether an entry existed."""
        async with self._lock:
            removed = self._entries.pop(fingerprint, None) is not None
            set_cache_size(len(self._entries))
            return removed

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            set_cache_size(0)

    def __len__(self) -> int:
        return len(self._entries)

    def _prune(self) -> None:
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


__all__ = ["PricingCache", "PricingCacheEntry"]
