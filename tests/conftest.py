from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from CollectIQ_core.adapters.testing import (
    ScriptedReasoningService,
    StaticComparablesSource,
    StaticVisionExtractor,
)
from CollectIQ_core.bootstrap import CoreServices, build_services
from CollectIQ_core.config.settings import (
    AppSettings,
    AuthenticitySettings,
    PricingSettings,
    RetrySettings,
    StorageSettings,
    TelemetrySettings,
    WorkflowSettings,
    get_settings,
)
from CollectIQ_core.models import (
    BorderMetrics,
    CardIdentity,
    Comparable,
    FeatureEnvelope,
    FontMetrics,
    OCRBlock,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

GENUINE_TEXT = (
    "Charizard HP 120",
    "Pokémon Fire Spin",
    "Weakness Resistance Retreat",
    "Illus. Mitsuhiro Arita",
    "© 1999 Nintendo Creatures GAME FREAK",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.delenv("CIQ_ENV", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture()
def identity() -> CardIdentity:
    return CardIdentity(
        name="Charizard",
        set_name="Base Set",
        number="4",
        rarity="Holo Rare",
        condition="Near Mint",
    )


@pytest.fixture()
def envelope(identity: CardIdentity) -> FeatureEnvelope:
    return FeatureEnvelope(
        image_ref="s3://cards/charizard.jpg",
        ocr=tuple(OCRBlock(text=text, confidence=0.95) for text in GENUINE_TEXT),
        borders=BorderMetrics(
            top_ratio=0.15,
            bottom_ratio=0.15,
            left_ratio=0.15,
            right_ratio=0.15,
            symmetry_score=0.95,
        ),
        holo_variance=0.6,
        font_metrics=FontMetrics(kerning=(0.10, 0.11, 0.10), alignment=0.95, font_size_variance=2.0),
        identity=identity,
        id_confidence=0.92,
    )


@pytest.fixture()
def counterfeit_envelope(identity: CardIdentity) -> FeatureEnvelope:
    return FeatureEnvelope(
        image_ref="s3://cards/fake.jpg",
        borders=BorderMetrics(
            top_ratio=0.05,
            bottom_ratio=0.30,
            left_ratio=0.10,
            right_ratio=0.25,
            symmetry_score=0.2,
        ),
        holo_variance=0.05,
        font_metrics=FontMetrics(kerning=(0.0, 0.5, 0.1), alignment=0.2, font_size_variance=40.0),
        identity=identity,
        id_confidence=0.4,
    )


def make_comparables(
    prices: list[float],
    *,
    source: str = "tcgplayer",
    sold_at: datetime = NOW - timedelta(days=2),
    currency: str = "USD",
    condition: str = "Near Mint",
) -> list[Comparable]:
    return [
        Comparable(price=price, currency=currency, sold_at=sold_at, condition=condition, source_name=source)
        for price in prices
    ]


@pytest.fixture()
def comparables() -> list[Comparable]:
    return make_comparables([100.0, 110.0, 1000.0, 105.0] * 3)


@pytest.fixture()
def settings() -> AppSettings:
    return AppSettings(
        workflow=WorkflowSettings(
            retry=RetrySettings(
                max_attempts=3,
                initial_backoff_seconds=0.0,
                max_backoff_seconds=0.0,
                jitter_seconds=0.0,
            ),
            aggregation_timeout_seconds=1.0,
        ),
        pricing=PricingSettings(source_timeout_seconds=0.5, summary_timeout_seconds=0.5),
        authenticity=AuthenticitySettings(reasoning_timeout_seconds=0.5),
        storage=StorageSettings(persist_timeout_seconds=0.5, publish_timeout_seconds=0.5),
        telemetry=TelemetrySettings(exporter="none"),
    )


@pytest.fixture()
def build_core(settings: AppSettings, envelope: FeatureEnvelope, comparables, clock):
    """Factory assembling the workflow core around in-memory doubles."""

    def factory(
        *,
        vision: StaticVisionExtractor | None = None,
        sources: list[StaticComparablesSource] | None = None,
        reasoning: ScriptedReasoningService | None = None,
        app_settings: AppSettings | None = None,
        **kwargs,
    ) -> CoreServices:
        return build_services(
            app_settings or settings,
            vision=vision or StaticVisionExtractor(envelope),
            sources=sources if sources is not None else [StaticComparablesSource("tcgplayer", comparables)],
            reasoning=reasoning or ScriptedReasoningService(),
            clock=clock,
            **kwargs,
        )

    return factory
