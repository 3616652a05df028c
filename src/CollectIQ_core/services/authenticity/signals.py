"""Authenticity signal computation from a feature envelope.

Every signal lands in [0, 1] where 1 means "looks genuine". The weighted sum
of the five signals is the overall authenticity score.
"""

from __future__ import annotations

import statistics

from CollectIQ_core.models import (
    AuthenticitySignals,
    FeatureEnvelope,
    ReferenceSignals,
)
from CollectIQ_core.utils.identifiers import normalize_identifier

SIGNAL_WEIGHTS: dict[str, float] = {
    "visual_hash": 0.30,
    "text_match": 0.25,
    "holo_pattern": 0.20,
    "border_consistency": 0.15,
    "font_validation": 0.10,
}

EXPECTED_TEXT_PATTERNS: tuple[str, ...] = (
    "hp",
    "©",
    "pokémon",
    "nintendo",
    "creatures",
    "game freak",
    "illus.",
    "weakness",
    "resistance",
    "retreat",
)

HOLOGRAPHIC_RARITIES: frozenset[str] = frozenset(
    {
        "holo",
        "holographic",
        "reverse holo",
        "ultra rare",
        "secret rare",
        "rainbow rare",
        "full art",
        "vmax",
        "vstar",
        "ex",
        "gx",
    }
)

NEUTRAL_SCORE = 0.5
MAX_KERNING_VARIANCE = 0.05
MAX_FONT_SIZE_VARIANCE = 50.0
BORDER_RATIO_TOLERANCE = 0.1


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def is_expected_holographic(rarity: str | None) -> bool:
    key = normalize_identifier(rarity)
    if not key:
        return False
    if key in HOLOGRAPHIC_RARITIES:
        return True
    return any(term in key.split() for term in ("holo", "holographic", "vmax", "vstar", "gx", "ex"))


def visual_hash_signal(envelope: FeatureEnvelope, reference: ReferenceSignals) -> float:
    """Similarity to the reference artwork hash; neutral when no reference exists."""
    if reference.reference_hash_confidence is None:
        return NEUTRAL_SCORE
    score = reference.reference_hash_confidence
    if reference.expected_name and envelope.identity and envelope.identity.name:
        if normalize_identifier(envelope.identity.name) != normalize_identifier(reference.expected_name):
            score *= 0.5
    return _clamp(score)


def text_match_signal(envelope: FeatureEnvelope, reference: ReferenceSignals) -> float:
    if not envelope.ocr:
        return 0.0
    text = envelope.ocr_text.lower()
    matched = sum(1 for pattern in EXPECTED_TEXT_PATTERNS if pattern in text)
    pattern_score = matched / len(EXPECTED_TEXT_PATTERNS)
    score = pattern_score * 0.7 + envelope.mean_ocr_confidence * 0.3
    if reference.expected_name and normalize_identifier(reference.expected_name) not in normalize_identifier(text):
        score *= 0.8
    return _clamp(score)


def holo_pattern_signal(envelope: FeatureEnvelope, reference: ReferenceSignals) -> float:
    variance = envelope.holo_variance
    if not reference.expected_holo:
        if variance < 0.2:
            return 1.0
        if variance < 0.4:
            return 0.7
        return 0.3
    low, optimum, high = 0.3, 0.6, 0.9
    if variance < low or variance > high:
        return 0.2
    return _clamp(1.0 - abs(variance - optimum) / (high - optimum))


def border_consistency_signal(envelope: FeatureEnvelope, reference: ReferenceSignals) -> float:
    borders = envelope.borders
    ratios = borders.ratios
    ratio_variance = statistics.pvariance(ratios)
    variance_score = _clamp(1.0 - ratio_variance * 100)
    mean_ratio = statistics.fmean(ratios)
    ratio_score = _clamp(1.0 - abs(mean_ratio - reference.expected_border_ratio) / BORDER_RATIO_TOLERANCE)
    return _clamp(borders.symmetry_score * 0.4 + variance_score * 0.3 + ratio_score * 0.3)


def font_validation_signal(envelope: FeatureEnvelope, reference: ReferenceSignals) -> float:
    metrics = envelope.font_metrics
    if len(metrics.kerning) >= 2:
        kerning_score = _clamp(1.0 - statistics.pvariance(metrics.kerning) / MAX_KERNING_VARIANCE)
    else:
        kerning_score = NEUTRAL_SCORE
    size_score = _clamp(1.0 - metrics.font_size_variance / MAX_FONT_SIZE_VARIANCE)
    return _clamp(metrics.alignment * 0.4 + kerning_score * 0.3 + size_score * 0.3)


def compute_signals(envelope: FeatureEnvelope, reference: ReferenceSignals) -> AuthenticitySignals:
    return AuthenticitySignals(
        visual_hash=round(visual_hash_signal(envelope, reference), 4),
        text_match=round(text_match_signal(envelope, reference), 4),
        holo_pattern=round(holo_pattern_signal(envelope, reference), 4),
        border_consistency=round(border_consistency_signal(envelope, reference), 4),
        font_validation=round(font_validation_signal(envelope, reference), 4),
    )


def overall_score(signals: AuthenticitySignals) -> float:
    """Weighted sum of the signals using :data:`SIGNAL_WEIGHTS`."""
    total = sum(getattr(signals, name) * weight for name, weight in SIGNAL_WEIGHTS.items())
    return round(_clamp(total), 4)


__all__ = [
    "EXPECTED_TEXT_PATTERNS",
    "HOLOGRAPHIC_RARITIES",
    "SIGNAL_WEIGHTS",
    "compute_signals",
    "is_expected_holographic",
    "overall_score",
]
