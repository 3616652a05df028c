"""Authenticity agent combining visual signals with a reasoning rationale."""

from __future__ import annotations

import structlog

from CollectIQ_core.adapters.base import ReasoningService
from CollectIQ_core.config.settings import AuthenticitySettings
from CollectIQ_core.models import (
    AuthenticityPayload,
    AuthenticitySignals,
    FeatureEnvelope,
    ReferenceSignals,
)
from CollectIQ_core.orchestration.resilience import call_with_timeout
from CollectIQ_core.orchestration.retry import RetryPolicy
from CollectIQ_core.services.authenticity.signals import compute_signals, overall_score
from CollectIQ_core.utils.errors import StepFailure

logger = structlog.get_logger(__name__)

STEP_NAME = "authenticity"


class AuthenticityAgent:
    """Scores a card for authenticity.

    The numeric score and the counterfeit flag depend only on the envelope and
    reference data. The reasoning rationale is best effort: when it cannot be
    obtained within its own attempt budget the assessment still succeeds with
    an empty rationale.
    """

    def __init__(
        self,
        reasoning: ReasoningService | None = None,
        *,
        settings: AuthenticitySettings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._reasoning = reasoning
        self._settings = settings or AuthenticitySettings()
        self._retry = retry_policy or RetryPolicy()

    async def assess(self, envelope: FeatureEnvelope, reference: ReferenceSignals) -> AuthenticityPayload:
        signals = compute_signals(envelope, reference)
        score = overall_score(signals)
        likely_counterfeit = score < self._settings.threshold
        rationale = await self._rationale(signals, score, likely_counterfeit, reference)
        logger.info(
            "authenticity.assessed",
            score=score,
            likely_counterfeit=likely_counterfeit,
            verified_by_reasoning=bool(rationale),
        )
        return AuthenticityPayload(
            score=score,
            signals=signals,
            likely_counterfeit=likely_counterfeit,
            rationale=rationale,
            verified_by_reasoning=bool(rationale),
        )

    async def _rationale(
        self,
        signals: AuthenticitySignals,
        score: float,
        likely_counterfeit: bool,
        reference: ReferenceSignals,
    ) -> str:
        if self._reasoning is None:
            return ""
        reasoning = self._reasoning
        verdict = "likely counterfeit" if likely_counterfeit else "likely genuine"
        prompt = (
            "Explain in at most three sentences why this trading card photo was judged "
            f"{verdict} (score {score:.2f}, threshold {self._settings.threshold:.2f}).\n"
            f"Expected card: {reference.expected_name or 'unknown'}; "
            f"holographic expected: {'yes' if reference.expected_holo else 'no'}.\n"
            f"Signals: visual hash {signals.visual_hash:.2f}, text match {signals.text_match:.2f}, "
            f"hologram {signals.holo_pattern:.2f}, borders {signals.border_consistency:.2f}, "
            f"fonts {signals.font_validation:.2f}."
        )

        async def ask() -> str:
            return await call_with_timeout(
                reasoning.infer(prompt),
                timeout_seconds=self._settings.reasoning_timeout_seconds,
                step=STEP_NAME,
                operation="reasoning.rationale",
            )

        try:
            answer = await self._retry.run(
                ask,
                step="authenticity.reasoning",
                max_attempts=self._settings.reasoning_attempts,
            )
        except StepFailure as exc:
            logger.warning("authenticity.reasoning.unavailable", error=str(exc), kind=exc.kind.value)
            return ""
        return answer.strip()


__all__ = ["AuthenticityAgent", "STEP_NAME"]
