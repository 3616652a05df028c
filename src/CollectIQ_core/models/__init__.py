"""Domain models shared by the workflow core."""

from __future__ import annotations

from .authenticity import AuthenticityPayload, AuthenticitySignals, ReferenceSignals
from .base import CoreModel
from .card import CardIdentity, CardSubmission, StandardCondition, normalize_condition
from .features import (
    BorderMetrics,
    BoundingBox,
    FeatureEnvelope,
    FontMetrics,
    ImageMetadata,
    ImageQuality,
    OCRBlock,
    OCRBlockType,
)
from .outcomes import BranchOutcome, OutcomeStatus
from .pricing import Comparable, NormalizedComparable, PricingPayload
from .record import AggregatedResult, CompletionEvent, ProcessingFailure, RecordStatus

__all__ = [
    "AggregatedResult",
    "AuthenticityPayload",
    "AuthenticitySignals",
    "BorderMetrics",
    "BoundingBox",
    "BranchOutcome",
    "CardIdentity",
    "CardSubmission",
    "Comparable",
    "CompletionEvent",
    "CoreModel",
    "FeatureEnvelope",
    "FontMetrics",
    "ImageMetadata",
    "ImageQuality",
    "NormalizedComparable",
    "OCRBlock",
    "OCRBlockType",
    "OutcomeStatus",
    "PricingPayload",
    "ProcessingFailure",
    "RecordStatus",
    "ReferenceSignals",
    "StandardCondition",
    "normalize_condition",
]
