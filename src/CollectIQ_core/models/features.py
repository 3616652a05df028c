"""Feature envelope produced by the vision step.

The envelope is the only view downstream agents get of the photograph: OCR
blocks, border geometry, hologram variance, font metrics and image quality.
All values are immutable once extracted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, model_validator

from .base import CoreModel
from .card import CardIdentity


class OCRBlockType(str, Enum):
    LINE = "LINE"
    WORD = "WORD"


class BoundingBox(CoreModel):
    left: float = Field(ge=0.0)
    top: float = Field(ge=0.0)
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)


class OCRBlock(CoreModel):
    """Recognised text fragment with its confidence in [0, 1]."""

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    bounding_box: BoundingBox | None = None
    type: OCRBlockType = OCRBlockType.LINE


class BorderMetrics(CoreModel):
    """Border width ratios per side plus left/right, top/bottom symmetry."""

    top_ratio: float = Field(ge=0.0, le=1.0)
    bottom_ratio: float = Field(ge=0.0, le=1.0)
    left_ratio: float = Field(ge=0.0, le=1.0)
    right_ratio: float = Field(ge=0.0, le=1.0)
    symmetry_score: float = Field(ge=0.0, le=1.0)

    @property
    def ratios(self) -> tuple[float, float, float, float]:
        return (self.top_ratio, self.bottom_ratio, self.left_ratio, self.right_ratio)


class FontMetrics(CoreModel):
    kerning: tuple[float, ...] = ()
    alignment: float = Field(default=1.0, ge=0.0, le=1.0)
    font_size_variance: float = Field(default=0.0, ge=0.0)


class ImageQuality(CoreModel):
    blur_score: float = Field(default=0.0, ge=0.0, le=1.0)
    glare_detected: bool = False
    brightness: float = Field(default=0.5, ge=0.0, le=1.0)


class ImageMetadata(CoreModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    format: str = "jpeg"
    size_bytes: int | None = Field(default=None, ge=0)


class FeatureEnvelope(CoreModel):
    """Structured visual features extracted from one card photograph."""

    image_ref: str
    ocr: tuple[OCRBlock, ...] = ()
    borders: BorderMetrics
    holo_variance: float = Field(ge=0.0, le=1.0)
    font_metrics: FontMetrics = Field(default_factory=FontMetrics)
    quality: ImageQuality = Field(default_factory=ImageQuality)
    image_meta: ImageMetadata | None = None
    identity: CardIdentity | None = None
    id_confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _confidence_requires_identity(self) -> FeatureEnvelope:
        if self.id_confidence is not None and self.identity is None:
            raise ValueError("id_confidence requires an identity")
        return self

    @property
    def ocr_text(self) -> str:
        return " ".join(block.text for block in self.ocr if block.text)

    @property
    def mean_ocr_confidence(self) -> float:
        if not self.ocr:
            return 0.0
        return sum(block.confidence for block in self.ocr) / len(self.ocr)


__all__ = [
    "BorderMetrics",
    "BoundingBox",
    "FeatureEnvelope",
    "FontMetrics",
    "ImageMetadata",
    "ImageQuality",
    "OCRBlock",
    "OCRBlockType",
]
