"""Authenticity signal computation and reference data."""

from __future__ import annotations

from .references import ReferenceProvider, StaticReferenceProvider
from .signals import SIGNAL_WEIGHTS, compute_signals, is_expected_holographic, overall_score

__all__ = [
    "ReferenceProvider",
    "SIGNAL_WEIGHTS",
    "StaticReferenceProvider",
    "compute_signals",
    "is_expected_holographic",
    "overall_score",
]
