"""Normalisation and fusion of comparable sales into one valuation.

The pipeline is deterministic for a fixed ``as_of``:

1. ``normalize_comparables`` converts every sale to USD, maps its condition
   onto a standard bucket and drops non-positive prices and sales older than
   the look-back window.
2. ``remove_outliers`` discards sales whose modified z-score (median absolute
   deviation) exceeds the threshold. Small samples are kept whole.
3. ``fuse_comparables`` computes the 10th/50th/90th percentiles, the
   coefficient of variation as volatility and a confidence score from sample
   size, recency and dispersion.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Iterable, Sequence
from datetime import datetime

import structlog

from CollectIQ_core.models import Comparable, NormalizedComparable, PricingPayload, normalize_condition
from CollectIQ_core.utils.time import age_in_days

logger = structlog.get_logger(__name__)

# USD value of one unit of each currency.
CURRENCY_RATES: dict[str, float] = {
    "USD": 1.0,
    "EUR": 1.08,
    "GBP": 1.27,
    "CAD": 0.73,
    "AUD": 0.65,
    "JPY": 0.0067,
}

MIN_SAMPLE_FOR_OUTLIERS = 4
MAD_SCALE = 0.6745
MEAN_AD_SCALE = 1.253314
CONFIDENT_SAMPLE_SIZE = 20


def normalize_comparables(
    comparables: Iterable[Comparable],
    *,
    as_of: datetime,
    window_days: int,
) -> list[NormalizedComparable]:
    normalized: list[NormalizedComparable] = []
    for comp in comparables:
        rate = CURRENCY_RATES.get(comp.currency)
        if rate is None:
            logger.info("pricing.normalize.unknown_currency", currency=comp.currency, source=comp.source_name)
            continue
        price = comp.price * rate
        if not math.isfinite(price) or price <= 0:
            continue
        if age_in_days(comp.sold_at, as_of=as_of) > window_days:
            continue
        normalized.append(
            NormalizedComparable(
                price=round(price, 2),
                sold_at=comp.sold_at,
                condition=normalize_condition(comp.condition),
                source_name=comp.source_name,
            )
        )
    return normalized


def remove_outliers(
    comparables: Sequence[NormalizedComparable],
    *,
    threshold: float = 3.5,
) -> list[NormalizedComparable]:
    """Drop sales whose modified z-score exceeds ``threshold``."""
    if len(comparables) < MIN_SAMPLE_FOR_OUTLIERS:
        return list(comparables)
    prices = [comp.price for comp in comparables]
    center = statistics.median(prices)
    deviations = [abs(price - center) for price in prices]
    mad = statistics.median(deviations)
    if mad > 0:
        scale = mad / MAD_SCALE
    else:
        mean_ad = statistics.fmean(deviations)
        if mean_ad == 0:
            return list(comparables)
        scale = mean_ad * MEAN_AD_SCALE
    kept = [comp for comp in comparables if abs(comp.price - center) / scale <= threshold]
    return kept or list(comparables)


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """Linear interpolation between closest ranks; ``sorted_values`` must be sorted."""
    if not sorted_values:
        raise ValueError("percentile of empty sequence")
    if len(sorted_values) == 1:
        return sorted_values[0]
    rank = (pct / 100.0) * (len(sorted_values) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return sorted_values[lower]
    weight = rank - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def coefficient_of_variation(prices: Sequence[float]) -> float:
    if len(prices) < 2:
        return 0.0
    mean = statistics.fmean(prices)
    if mean == 0:
        return 0.0
    return statistics.pstdev(prices) / mean


def compute_confidence(
    comparables: Sequence[NormalizedComparable],
    *,
    as_of: datetime,
    window_days: int,
) -> float:
    """Blend sample size (50%), recency (30%) and price agreement (20%)."""
    if not comparables:
        return 0.0
    size_factor = min(len(comparables) / CONFIDENT_SAMPLE_SIZE, 1.0)
    recency_factor = statistics.fmean(
        max(0.0, 1.0 - age_in_days(comp.sold_at, as_of=as_of) / window_days) for comp in comparables
    )
    dispersion_factor = max(0.0, 1.0 - coefficient_of_variation([comp.price for comp in comparables]))
    score = size_factor * 0.5 + recency_factor * 0.3 + dispersion_factor * 0.2
    return round(min(max(score, 0.0), 1.0), 4)


def fuse_comparables(
    comparables: Sequence[NormalizedComparable],
    *,
    as_of: datetime,
    window_days: int,
    outlier_threshold: float = 3.5,
) -> PricingPayload:
    """Fuse normalised sales into a :class:`PricingPayload`.

    Raises:
        ValueError: If ``comparables`` is empty.
    """
    if not comparables:
        raise ValueError("Cannot fuse an empty set of comparables")
    kept = remove_outliers(comparables, threshold=outlier_threshold)
    prices = sorted(comp.price for comp in kept)
    payload = PricingPayload(
        value_low=round(percentile(prices, 10), 2),
        value_median=round(percentile(prices, 50), 2),
        value_high=round(percentile(prices, 90), 2),
        comps_count=len(kept),
        window_days=window_days,
        sources=tuple(sorted({comp.source_name for comp in kept})),
        confidence=compute_confidence(kept, as_of=as_of, window_days=window_days),
        volatility=round(coefficient_of_variation(prices), 4),
        outliers_removed=len(comparables) - len(kept),
    )
    logger.debug(
        "pricing.fusion.completed",
        comps=len(comparables),
        kept=len(kept),
        median=payload.value_median,
    )
    return payload


__all__ = [
    "CURRENCY_RATES",
    "coefficient_of_variation",
    "compute_confidence",
    "fuse_comparables",
    "normalize_comparables",
    "percentile",
    "remove_outliers",
]
