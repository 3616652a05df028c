from __future__ import annotations

import pytest

from CollectIQ_core.models import (
    AuthenticityPayload,
    AuthenticitySignals,
    BranchOutcome,
    PricingPayload,
    RecordStatus,
)
from CollectIQ_core.orchestration.aggregator import Aggregator, coerce_outcome
from CollectIQ_core.orchestration.events import COMPLETION_TOPIC, InMemoryMessageBus
from CollectIQ_core.storage.records import InMemoryRecordStore
from CollectIQ_core.utils.errors import ErrorKind, ProblemDetail
from tests.conftest import NOW

PRICING = PricingPayload(
    value_low=100.0,
    value_median=105.0,
    value_high=110.0,
    comps_count=9,
    window_days=14,
    sources=("tcgplayer",),
    confidence=0.8,
    volatility=0.04,
    summary="Stable market.",
)

AUTHENTICITY = AuthenticityPayload(
    score=0.84,
    signals=AuthenticitySignals(
        visual_hash=0.5,
        text_match=0.98,
        holo_pattern=1.0,
        border_consistency=0.98,
        font_validation=0.97,
    ),
    likely_counterfeit=False,
    rationale="Print pattern matches.",
    verified_by_reasoning=True,
)


@pytest.fixture()
def aggregator() -> Aggregator:
    return Aggregator(InMemoryRecordStore(), InMemoryMessageBus(), clock=lambda: NOW)


def test_coerce_accepts_branch_outcome_and_bare_payload() -> None:
    outcome = BranchOutcome.success("pricing", PRICING, attempts=2)
    assert coerce_outcome("pricing", outcome, PricingPayload) is outcome
    bare = coerce_outcome("pricing", PRICING, PricingPayload)
    assert bare.succeeded and bare.payload is PRICING


def test_coerce_unwraps_step_wrapper_mappings() -> None:
    wrapped = coerce_outcome(
        "pricing",
        {"status": "success", "result": PRICING.model_dump(by_alias=True), "attempts": 2},
        PricingPayload,
    )
    assert wrapped.succeeded
    assert wrapped.payload == PRICING
    assert wrapped.attempts == 2

    plain = coerce_outcome("pricing", PRICING.model_dump(), PricingPayload)
    assert plain.payload == PRICING

    failed = coerce_outcome(
        "authenticity",
        {"status": "failed", "error_kind": "transient", "error": {"title": "timeout", "status": 504}},
        AuthenticityPayload,
    )
    assert not failed.succeeded
    assert failed.error_kind is ErrorKind.TRANSIENT
    assert failed.error == ProblemDetail(title="timeout", status=504)


def test_coerce_rejects_unknown_shapes() -> None:
    with pytest.raises(TypeError):
        coerce_outcome("pricing", 42, PricingPayload)
    with pytest.raises(TypeError):
        coerce_outcome("pricing", {"status": "running"}, PricingPayload)
    with pytest.raises(TypeError):
        coerce_outcome("pricing", {"status": "success"}, PricingPayload)


@pytest.mark.asyncio
async def test_complete_record_is_persisted_then_published(aggregator, identity) -> None:
    result = await aggregator.aggregate(
        "exec-1",
        PRICING,
        AUTHENTICITY,
        card_id="card-1",
        image_ref="s3://cards/charizard.jpg",
        identity=identity,
        id_confidence=0.92,
    )
    assert result.status is RecordStatus.COMPLETE
    assert result.version == 1
    assert result.name == "Charizard"
    assert result.value_median == 105.0
    assert result.authenticity_score == 0.84
    assert result.valuation_summary == "Stable market."

    records = aggregator._records
    assert await records.get("card-1") == result
    messages = aggregator._bus.messages(COMPLETION_TOPIC)
    assert len(messages) == 1
    assert messages[0].key == "card-1"
    assert messages[0].value["data"]["status"] == "complete"


@pytest.mark.asyncio
async def test_partial_record_leaves_failed_branch_unset(aggregator) -> None:
    result = await aggregator.aggregate(
        "exec-1",
        BranchOutcome.failed("pricing", kind=ErrorKind.TRANSIENT),
        BranchOutcome.success("authenticity", AUTHENTICITY),
        card_id="card-1",
        image_ref="s3://cards/charizard.jpg",
    )
    assert result.status is RecordStatus.PARTIAL
    assert result.has_authenticity
    assert not result.has_valuation
    assert result.sources is None


@pytest.mark.asyncio
async def test_aggregate_refuses_two_failed_branches(aggregator) -> None:
    with pytest.raises(ValueError):
        await aggregator.aggregate(
            "exec-1",
            BranchOutcome.failed("pricing", kind=ErrorKind.PERMANENT),
            BranchOutcome.failed("authenticity", kind=ErrorKind.PERMANENT),
            card_id="card-1",
            image_ref="s3://cards/charizard.jpg",
        )
    assert aggregator._bus.messages(COMPLETION_TOPIC) == []
