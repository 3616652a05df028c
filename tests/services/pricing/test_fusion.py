from __future__ import annotations

from datetime import timedelta

import pytest

from CollectIQ_core.models import NormalizedComparable, StandardCondition
from CollectIQ_core.services.pricing.fusion import (
    coefficient_of_variation,
    compute_confidence,
    fuse_comparables,
    normalize_comparables,
    percentile,
    remove_outliers,
)
from tests.conftest import NOW, make_comparables


def _normalized(prices: list[float], *, age_days: float = 1.0) -> list[NormalizedComparable]:
    return [
        NormalizedComparable(
            price=price,
            sold_at=NOW - timedelta(days=age_days),
            condition=StandardCondition.NEAR_MINT,
            source_name="tcgplayer",
        )
        for price in prices
    ]


def test_normalize_converts_currency_and_condition() -> None:
    comps = make_comparables([100.0], currency="eur", condition="NM")
    normalized = normalize_comparables(comps, as_of=NOW, window_days=14)
    assert len(normalized) == 1
    assert normalized[0].price == pytest.approx(108.0)
    assert normalized[0].condition is StandardCondition.NEAR_MINT


def test_normalize_drops_unusable_sales() -> None:
    comps = [
        *make_comparables([50.0], currency="XYZ"),
        *make_comparables([0.0, -5.0]),
        *make_comparables([75.0], sold_at=NOW - timedelta(days=30)),
        *make_comparables([80.0]),
    ]
    normalized = normalize_comparables(comps, as_of=NOW, window_days=14)
    assert [comp.price for comp in normalized] == [80.0]


def test_remove_outliers_uses_median_absolute_deviation() -> None:
    kept = remove_outliers(_normalized([100.0, 110.0, 1000.0, 105.0] * 3))
    assert sorted({comp.price for comp in kept}) == [100.0, 105.0, 110.0]
    assert len(kept) == 9


def test_remove_outliers_keeps_small_and_flat_samples() -> None:
    small = _normalized([10.0, 1000.0, 12.0])
    assert remove_outliers(small) == small
    flat = _normalized([20.0] * 6)
    assert remove_outliers(flat) == flat


def test_percentile_interpolates_between_ranks() -> None:
    assert percentile([1.0, 2.0, 3.0, 4.0], 50) == pytest.approx(2.5)
    assert percentile([7.0], 90) == 7.0
    with pytest.raises(ValueError):
        percentile([], 50)


def test_coefficient_of_variation_is_zero_for_single_price() -> None:
    assert coefficient_of_variation([42.0]) == 0.0
    assert coefficient_of_variation([10.0, 10.0, 10.0]) == 0.0


def test_confidence_rewards_size_recency_and_agreement() -> None:
    full = compute_confidence(_normalized([50.0] * 20, age_days=0), as_of=NOW, window_days=14)
    assert full == pytest.approx(1.0)
    sparse = compute_confidence(_normalized([50.0, 90.0], age_days=10), as_of=NOW, window_days=14)
    assert 0.0 < sparse < full


def test_fuse_reports_percentile_band_without_outliers() -> None:
    normalized = normalize_comparables(
        make_comparables([100.0, 110.0, 1000.0, 105.0] * 3),
        as_of=NOW,
        window_days=14,
    )
    payload = fuse_comparables(normalized, as_of=NOW, window_days=14)
    assert payload.value_low == pytest.approx(100.0)
    assert payload.value_median == pytest.approx(105.0)
    assert payload.value_high == pytest.approx(110.0)
    assert payload.comps_count == 9
    assert payload.outliers_removed == 3
    assert payload.sources == ("tcgplayer",)
    assert payload.window_days == 14
    assert 0.0 < payload.confidence <= 1.0
    assert payload.volatility < 0.1


def test_fuse_rejects_empty_input() -> None:
    with pytest.raises(ValueError):
        fuse_comparables([], as_of=NOW, window_days=14)
