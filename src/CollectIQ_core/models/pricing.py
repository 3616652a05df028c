"""Comparable sales and fused pricing payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator, model_validator

from .base import CoreModel
from .card import StandardCondition


class Comparable(CoreModel):
    """One sold listing as reported by a source, before normalisation."""

    price: float
    currency: str = "USD"
    sold_at: datetime
    condition: str | None = None
    source_name: str
    listing_url: str | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()


class NormalizedComparable(CoreModel):
    """Comparable expressed in USD with a standard condition bucket."""

    price: float = Field(gt=0)
    sold_at: datetime
    condition: StandardCondition
    source_name: str


class PricingPayload(CoreModel):
    """Fused valuation across every source that answered."""

    value_low: float = Field(ge=0)
    value_median: float = Field(ge=0)
    value_high: float = Field(ge=0)
    comps_count: int = Field(ge=1)
    window_days: int = Field(ge=1)
    sources: tuple[str, ...]
    confidence: float = Field(ge=0.0, le=1.0)
    volatility: float = Field(ge=0.0)
    outliers_removed: int = Field(default=0, ge=0)
    summary: str | None = None

    @model_validator(mode="after")
    def _ordered_band(self) -> PricingPayload:
        if not self.value_low <= self.value_median <= self.value_high:
            raise ValueError("Price band must satisfy low <= median <= high")
        return self


__all__ = ["Comparable", "NormalizedComparable", "PricingPayload"]
