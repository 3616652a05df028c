"""Adapters for comparable sales sources, vision and reasoning services."""

from __future__ import annotations

from .base import ComparablesSource, ReasoningService, VisionExtractor
from .http import HttpComparablesSource, HttpReasoningService, HttpVisionExtractor, classify_status

__all__ = [
    "ComparablesSource",
    "HttpComparablesSource",
    "HttpReasoningService",
    "HttpVisionExtractor",
    "ReasoningService",
    "VisionExtractor",
    "classify_status",
]
