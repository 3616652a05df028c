from __future__ import annotations

import pytest

from CollectIQ_core.adapters.testing import FailureScript, ScriptedReasoningService
from CollectIQ_core.agents.authenticity import AuthenticityAgent
from CollectIQ_core.config.settings import AuthenticitySettings
from CollectIQ_core.orchestration.retry import RetryPolicy
from CollectIQ_core.services.authenticity.references import StaticReferenceProvider
from CollectIQ_core.utils.errors import AdapterError, ErrorKind

FAST = RetryPolicy(initial_backoff_seconds=0.0, max_backoff_seconds=0.0, jitter_seconds=0.0)


@pytest.mark.asyncio
async def test_genuine_card_with_rationale(envelope, identity) -> None:
    reasoning = ScriptedReasoningService("Foil and fonts match the reference print.")
    agent = AuthenticityAgent(reasoning, retry_policy=FAST)
    payload = await agent.assess(envelope, await StaticReferenceProvider().reference_for(identity))
    assert payload.likely_counterfeit is False
    assert payload.score > 0.7
    assert payload.rationale == "Foil and fonts match the reference print."
    assert payload.verified_by_reasoning is True
    assert "likely genuine" in reasoning.prompts[0]


@pytest.mark.asyncio
async def test_counterfeit_flag_follows_threshold(counterfeit_envelope, identity) -> None:
    reference = await StaticReferenceProvider().reference_for(identity)
    payload = await AuthenticityAgent(retry_policy=FAST).assess(counterfeit_envelope, reference)
    assert payload.likely_counterfeit is True
    assert payload.rationale == ""
    assert payload.verified_by_reasoning is False

    lenient = AuthenticityAgent(settings=AuthenticitySettings(threshold=0.1), retry_policy=FAST)
    assert (await lenient.assess(counterfeit_envelope, reference)).likely_counterfeit is False


@pytest.mark.asyncio
async def test_reasoning_timeout_keeps_score(envelope, identity) -> None:
    reasoning = ScriptedReasoningService(delay_seconds=1.0)
    agent = AuthenticityAgent(
        reasoning,
        settings=AuthenticitySettings(reasoning_timeout_seconds=0.01, reasoning_attempts=2),
        retry_policy=FAST,
    )
    reference = await StaticReferenceProvider().reference_for(identity)
    payload = await agent.assess(envelope, reference)
    assert payload.rationale == ""
    assert payload.verified_by_reasoning is False
    assert payload.likely_counterfeit is False
    assert reasoning.calls == 2


@pytest.mark.asyncio
async def test_permanent_reasoning_error_is_not_retried(envelope, identity) -> None:
    reasoning = ScriptedReasoningService(
        failures=FailureScript([AdapterError("bad prompt", adapter="reasoning", kind=ErrorKind.PERMANENT)])
    )
    agent = AuthenticityAgent(reasoning, retry_policy=FAST)
    reference = await StaticReferenceProvider().reference_for(identity)
    payload = await agent.assess(envelope, reference)
    assert payload.rationale == ""
    assert reasoning.calls == 1
