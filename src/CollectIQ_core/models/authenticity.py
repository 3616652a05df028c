"""Authenticity signals, reference characteristics and the assessment payload."""

from __future__ import annotations

from pydantic import Field

from .base import CoreModel


class AuthenticitySignals(CoreModel):
    """Five independent scores in [0, 1]; higher means more likely genuine."""

    visual_hash: float = Field(ge=0.0, le=1.0)
    text_match: float = Field(ge=0.0, le=1.0)
    holo_pattern: float = Field(ge=0.0, le=1.0)
    border_consistency: float = Field(ge=0.0, le=1.0)
    font_validation: float = Field(ge=0.0, le=1.0)


class ReferenceSignals(CoreModel):
    """Known characteristics of the genuine card the photo claims to be."""

    expected_name: str | None = None
    expected_holo: bool = False
    reference_hash_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    expected_border_ratio: float = Field(default=0.15, ge=0.0, le=1.0)
    version: int = Field(default=1, ge=1)


class AuthenticityPayload(CoreModel):
    score: float = Field(ge=0.0, le=1.0)
    signals: AuthenticitySignals
    likely_counterfeit: bool
    rationale: str = ""
    verified_by_reasoning: bool = False


__all__ = ["AuthenticityPayload", "AuthenticitySignals", "ReferenceSignals"]
