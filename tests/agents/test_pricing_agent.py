from __future__ import annotations

import asyncio

import pytest

from CollectIQ_core.adapters.testing import (
    FailureScript,
    ScriptedReasoningService,
    StaticComparablesSource,
)
from CollectIQ_core.agents.pricing import PricingAgent
from CollectIQ_core.config.settings import CircuitBreakerSettings, PricingSettings
from CollectIQ_core.models import CardIdentity
from CollectIQ_core.orchestration.resilience import CircuitState
from CollectIQ_core.storage.pricing_cache import PricingCache
from CollectIQ_core.utils.errors import (
    AdapterError,
    AllSourcesUnavailable,
    ErrorKind,
    NoComparablesFound,
    StepFailure,
)
from tests.conftest import NOW, make_comparables


def _down(name: str) -> StaticComparablesSource:
    return StaticComparablesSource(
        name,
        failures=FailureScript(
            [AdapterError(f"{name} unavailable", adapter=name, kind=ErrorKind.TRANSIENT)],
            repeat_last=True,
        ),
    )


def _agent(sources, *, reasoning=None, **settings) -> PricingAgent:
    return PricingAgent(
        sources,
        PricingCache(clock=lambda: NOW),
        reasoning=reasoning,
        settings=PricingSettings(source_timeout_seconds=0.5, summary_timeout_seconds=0.5, **settings),
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_price_fuses_all_sources(identity, envelope) -> None:
    tcg = StaticComparablesSource("tcgplayer", make_comparables([100.0, 105.0, 110.0]))
    ebay = StaticComparablesSource("ebay", make_comparables([104.0, 106.0], source="ebay"))
    agent = _agent([tcg, ebay], reasoning=ScriptedReasoningService("Prices are steady."))
    payload = await agent.price(identity, envelope)
    assert payload.comps_count == 5
    assert payload.sources == ("ebay", "tcgplayer")
    assert payload.value_median == pytest.approx(105.0)
    assert payload.summary == "Prices are steady."


@pytest.mark.asyncio
async def test_cache_hit_skips_sources_unless_forced(identity) -> None:
    source = StaticComparablesSource("tcgplayer", make_comparables([100.0, 105.0, 110.0]))
    agent = _agent([source])
    first = await agent.price(identity)
    second = await agent.price(identity)
    assert second == first
    assert source.calls == 1
    await agent.price(identity, force_refresh=True)
    assert source.calls == 2


@pytest.mark.asyncio
async def test_partial_source_failure_still_prices(identity) -> None:
    healthy = StaticComparablesSource("tcgplayer", make_comparables([100.0, 105.0, 110.0]))
    agent = _agent([healthy, _down("ebay")])
    payload = await agent.price(identity)
    assert payload.sources == ("tcgplayer",)
    assert payload.comps_count == 3


@pytest.mark.asyncio
async def test_all_sources_down_is_transient(identity) -> None:
    agent = _agent([_down("tcgplayer"), _down("ebay")])
    with pytest.raises(AllSourcesUnavailable) as excinfo:
        await agent.price(identity)
    assert excinfo.value.kind is ErrorKind.TRANSIENT
    assert set(excinfo.value.failures) == {"tcgplayer", "ebay"}


@pytest.mark.asyncio
async def test_no_usable_sales_is_permanent(identity) -> None:
    stale = StaticComparablesSource("tcgplayer", make_comparables([100.0], currency="XYZ"))
    with pytest.raises(NoComparablesFound) as excinfo:
        await _agent([stale]).price(identity)
    assert excinfo.value.kind is ErrorKind.PERMANENT


@pytest.mark.asyncio
async def test_unidentified_card_is_permanent() -> None:
    source = StaticComparablesSource("tcgplayer", make_comparables([100.0]))
    with pytest.raises(StepFailure) as excinfo:
        await _agent([source]).price(CardIdentity())
    assert excinfo.value.kind is ErrorKind.PERMANENT
    assert source.calls == 0


@pytest.mark.asyncio
async def test_open_circuit_skips_failing_source(identity) -> None:
    failing = _down("ebay")
    healthy = StaticComparablesSource("tcgplayer", make_comparables([100.0, 105.0, 110.0]))
    agent = _agent(
        [healthy, failing],
        circuit_breaker=CircuitBreakerSettings(failure_threshold=2, recovery_timeout_seconds=60),
    )
    for _ in range(3):
        await agent.price(identity, force_refresh=True)
    assert agent.breaker_for("ebay").state is CircuitState.OPEN
    assert failing.calls == 2
    assert healthy.calls == 3


@pytest.mark.asyncio
async def test_throttled_source_is_bounded_by_its_timeout(identity) -> None:
    throttled = StaticComparablesSource("tcgplayer", make_comparables([100.0, 105.0, 110.0]))
    agent = PricingAgent(
        [throttled],
        PricingCache(clock=lambda: NOW),
        settings=PricingSettings(source_timeout_seconds=0.1),
        rate_limits={"tcgplayer": 1},
        clock=lambda: NOW,
    )
    await agent.price(identity, force_refresh=True)
    with pytest.raises(AllSourcesUnavailable) as excinfo:
        await asyncio.wait_for(agent.price(identity, force_refresh=True), timeout=2.0)
    assert "timed out" in excinfo.value.failures["tcgplayer"]
    assert throttled.calls == 1


@pytest.mark.asyncio
async def test_summary_failure_does_not_fail_pricing(identity) -> None:
    reasoning = ScriptedReasoningService(delay_seconds=1.0)
    source = StaticComparablesSource("tcgplayer", make_comparables([100.0, 105.0, 110.0]))
    agent = PricingAgent(
        [source],
        PricingCache(clock=lambda: NOW),
        reasoning=reasoning,
        settings=PricingSettings(summary_timeout_seconds=0.01),
        clock=lambda: NOW,
    )
    payload = await agent.price(identity)
    assert payload.summary is None
    assert reasoning.calls == 1
