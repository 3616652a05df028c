"""Storage collaborators: pricing cache, record store and audit log."""

from __future__ import annotations

from .audit import AuditLog, AuditRecord, InMemoryAuditLog
from .pricing_cache import PricingCache, PricingCacheEntry
from .records import InMemoryRecordStore, RecordStore

__all__ = [
    "AuditLog",
    "AuditRecord",
    "InMemoryAuditLog",
    "InMemoryRecordStore",
    "PricingCache",
    "PricingCacheEntry",
    "RecordStore",
]
