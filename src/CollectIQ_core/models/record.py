"""Persisted card records, failure markers and the completion event."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from .authenticity import AuthenticitySignals
from .base import CoreModel


class RecordStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


class AggregatedResult(CoreModel):
    """Merged record for one execution; unset groups mean that branch failed."""

    execution_id: str
    card_id: str
    version: int = Field(default=1, ge=1)
    image_ref: str
    status: RecordStatus
    completed_at: datetime

    name: str | None = None
    set_name: str | None = None
    number: str | None = None
    rarity: str | None = None
    condition: str | None = None
    id_confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    authenticity_score: float | None = Field(default=None, ge=0.0, le=1.0)
    authenticity_signals: AuthenticitySignals | None = None
    likely_counterfeit: bool | None = None
    authenticity_rationale: str | None = None

    value_low: float | None = None
    value_median: float | None = None
    value_high: float | None = None
    comps_count: int | None = None
    sources: tuple[str, ...] | None = None
    pricing_confidence: float | None = None
    valuation_summary: str | None = None

    @property
    def has_authenticity(self) -> bool:
        return self.authenticity_score is not None

    @property
    def has_valuation(self) -> bool:
        return self.value_median is not None


class ProcessingFailure(CoreModel):
    """Explicit marker for an execution that never produced a record."""

    card_id: str
    execution_id: str
    step: str
    error_kind: str
    message: str
    failed_at: datetime


class CompletionEvent(CoreModel):
    execution_id: str
    card_id: str
    status: RecordStatus
    completed_at: datetime


__all__ = ["AggregatedResult", "CompletionEvent", "ProcessingFailure", "RecordStatus"]
