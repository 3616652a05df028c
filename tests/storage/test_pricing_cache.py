from __future__ import annotations

from datetime import timedelta

import pytest

from CollectIQ_core.models import PricingPayload
from CollectIQ_core.storage.pricing_cache import PricingCache
from tests.conftest import NOW


class _FakeClock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def _payload(median: float = 105.0) -> PricingPayload:
    return PricingPayload(
        value_low=median - 5,
        value_median=median,
        value_high=median + 5,
        comps_count=9,
        window_days=14,
        sources=("tcgplayer",),
        confidence=0.8,
        volatility=0.04,
    )


@pytest.fixture()
def fake_clock() -> _FakeClock:
    return _FakeClock()


@pytest.mark.asyncio
async def test_get_returns_fresh_entry(fake_clock) -> None:
    cache = PricingCache(ttl_seconds=60, clock=fake_clock)
    await cache.put("fp-1", _payload())
    entry = await cache.get("fp-1")
    assert entry is not None
    assert entry.fused_result.value_median == 105.0
    assert entry.sources_used == ("tcgplayer",)
    assert entry.comps_count == 9
    assert await cache.get("fp-missing") is None


@pytest.mark.asyncio
async def test_expired_entries_are_evicted(fake_clock) -> None:
    cache = PricingCache(ttl_seconds=60, clock=fake_clock)
    await cache.put("fp-1", _payload())
    fake_clock.advance(59)
    assert await cache.get("fp-1") is not None
    fake_clock.advance(1)
    assert await cache.get("fp-1") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_overwrite_moves_cached_at_forward(fake_clock) -> None:
    cache = PricingCache(ttl_seconds=60, clock=fake_clock)
    first = await cache.put("fp-1", _payload(100.0))
    second = await cache.put("fp-1", _payload(120.0))
    assert second.cached_at > first.cached_at
    entry = await cache.get("fp-1")
    assert entry is not None
    assert entry.fused_result.value_median == 120.0


@pytest.mark.asyncio
async def test_lru_bound_and_invalidate(fake_clock) -> None:
    cache = PricingCache(ttl_seconds=60, max_entries=2, clock=fake_clock)
    await cache.put("a", _payload())
    await cache.put("b", _payload())
    await cache.get("a")
    await cache.put("c", _payload())
    assert await cache.get("b") is None
    assert await cache.get("a") is not None
    assert await cache.invalidate("a") is True
    assert await cache.invalidate("a") is False
    await cache.clear()
    assert len(cache) == 0
