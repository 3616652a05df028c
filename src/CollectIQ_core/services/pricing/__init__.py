"""Comparable sales normalisation and fusion."""

from __future__ import annotations

from .fusion import (
    CURRENCY_RATES,
    compute_confidence,
    fuse_comparables,
    normalize_comparables,
    percentile,
    remove_outliers,
)

__all__ = [
    "CURRENCY_RATES",
    "compute_confidence",
    "fuse_comparables",
    "normalize_comparables",
    "percentile",
    "remove_outliers",
]
