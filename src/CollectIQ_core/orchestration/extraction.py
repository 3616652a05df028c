"""Feature extraction step wrapping the vision capability."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from CollectIQ_core.adapters.base import VisionExtractor
from CollectIQ_core.models import FeatureEnvelope
from CollectIQ_core.utils.errors import ErrorKind, ExtractionError, StepFailure

from .resilience import call_with_timeout
from .retry import classify_error

logger = structlog.get_logger(__name__)

STEP_NAME = "extraction"


class FeatureExtractionStep:
    """Single vision call under a timeout, mapped onto :class:`ExtractionError`.

    Timeouts and throttling surface as transient errors; an unreadable image or
    an envelope that does not validate is permanent.
    """

    def __init__(self, vision: VisionExtractor, *, timeout_seconds: float = 15.0) -> None:
        self._vision = vision
        self._timeout = timeout_seconds

    async def extract(self, image_ref: str) -> FeatureEnvelope:
        try:
            envelope = await call_with_timeout(
                self._vision.extract(image_ref),
                timeout_seconds=self._timeout,
                step=STEP_NAME,
                operation="vision.extract",
            )
        except ExtractionError:
            raise
        except StepFailure as exc:
            raise ExtractionError(str(exc), kind=exc.kind, detail=exc.problem.detail) from exc
        except ValidationError as exc:
            raise ExtractionError(
                "Feature envelope failed validation",
                kind=ErrorKind.PERMANENT,
                detail=str(exc),
            ) from exc
        except Exception as exc:
            raise ExtractionError(str(exc) or type(exc).__name__, kind=classify_error(exc)) from exc

        if not isinstance(envelope, FeatureEnvelope):
            raise ExtractionError(
                f"Vision capability returned {type(envelope).__name__}",
                kind=ErrorKind.PERMANENT,
            )
        logger.debug(
            "extraction.completed",
            image_ref=image_ref,
            ocr_blocks=len(envelope.ocr),
            identified=envelope.identity is not None,
        )
        return envelope


__all__ = ["FeatureExtractionStep", "STEP_NAME"]
