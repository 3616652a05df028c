"""Pricing agent: cached, multi-source, outlier-robust card valuation.

Key Responsibilities:
    - Serve fused valuations from the pricing cache unless a refresh is forced
    - Query every configured comparable source concurrently, each behind its
      own timeout, circuit breaker and rate limiter
    - Tolerate partial source failure; fail transiently only when no source
      answered at all
    - Normalise, fuse and optionally summarise the comparables, then write the
      result back into the cache

Collaborators:
    - Upstream: the workflow orchestrator runs :meth:`PricingAgent.price` as
      the pricing branch
    - Downstream: :mod:`CollectIQ_core.services.pricing.fusion`,
      :class:`~CollectIQ_core.storage.pricing_cache.PricingCache` and the
      source and reasoning adapters

Side Effects:
    - Writes the pricing cache and emits source metrics
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import structlog
from aiolimiter import AsyncLimiter

from CollectIQ_core.adapters.base import ComparablesSource, ReasoningService
from CollectIQ_core.config.settings import PricingSettings
from CollectIQ_core.models import CardIdentity, Comparable, FeatureEnvelope, PricingPayload
from CollectIQ_core.observability.metrics import record_source_request
from CollectIQ_core.orchestration.resilience import CircuitBreaker, CircuitOpenError, call_with_timeout
from CollectIQ_core.services.pricing.fusion import fuse_comparables, normalize_comparables
from CollectIQ_core.storage.pricing_cache import PricingCache
from CollectIQ_core.utils.errors import (
    AllSourcesUnavailable,
    ErrorKind,
    NoComparablesFound,
    StepFailure,
)
from CollectIQ_core.utils.time import Clock, utc_now

logger = structlog.get_logger(__name__)

STEP_NAME = "pricing"


@dataclass(slots=True)
class _SourceSlot:
    source: ComparablesSource
    breaker: CircuitBreaker
    limiter: AsyncLimiter

    @property
    def name(self) -> str:
        return self.source.name


@dataclass(slots=True)
class _FetchResult:
    comparables: list[Comparable]
    answered: list[str]
    failures: dict[str, str]


class PricingAgent:
    def __init__(
        self,
        sources: Sequence[ComparablesSource],
        cache: PricingCache,
        *,
        reasoning: ReasoningService | None = None,
        settings: PricingSettings | None = None,
        rate_limits: Mapping[str, float] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or PricingSettings()
        breaker_settings = self._settings.circuit_breaker
        limits = dict(rate_limits or {})
        self._slots = [
            _SourceSlot(
                source=source,
                breaker=CircuitBreaker(
                    service=source.name,
                    failure_threshold=breaker_settings.failure_threshold,
                    recovery_timeout_seconds=breaker_settings.recovery_timeout_seconds,
                ),
                limiter=AsyncLimiter(limits.get(source.name, 30.0), time_period=60),
            )
            for source in sources
        ]
        self._cache = cache
        self._reasoning = reasoning
        self._clock = clock

    @property
    def source_names(self) -> list[str]:
        return [slot.name for slot in self._slots]

    def breaker_for(self, source_name: str) -> CircuitBreaker:
        for slot in self._slots:
            if slot.name == source_name:
                return slot.breaker
        raise KeyError(source_name)

    async def price(
        self,
        identity: CardIdentity,
        envelope: FeatureEnvelope | None = None,
        *,
        force_refresh: bool = False,
    ) -> PricingPayload:
        """Return the fused valuation for ``identity``.

        Raises:
            StepFailure: Permanent when the card is unidentified.
            AllSourcesUnavailable: When no source answered.
            NoComparablesFound: When sources answered without usable sales.
        """
        if envelope is not None:
            identity = identity.merged_with(envelope.identity)
        if not identity.is_known:
            raise StepFailure(
                "Card identity is unknown; cannot price",
                kind=ErrorKind.PERMANENT,
                step=STEP_NAME,
                status=422,
                error_type="unidentified",
            )
        fingerprint = identity.fingerprint()

        if not force_refresh:
            entry = await self._cache.get(fingerprint)
            if entry is not None:
                logger.info("pricing.cache.hit", fingerprint=fingerprint, cached_at=entry.cached_at.isoformat())
                return entry.fused_result

        fetched = await self._fetch_all(identity)
        if not fetched.answered:
            raise AllSourcesUnavailable(fetched.failures)

        as_of = self._clock()
        normalized = normalize_comparables(
            fetched.comparables,
            as_of=as_of,
            window_days=self._settings.window_days,
        )
        if not normalized:
            raise NoComparablesFound(fingerprint)
        payload = fuse_comparables(
            normalized,
            as_of=as_of,
            window_days=self._settings.window_days,
            outlier_threshold=self._settings.outlier_threshold,
        )
        summary = await self._summarize(identity, payload)
        if summary:
            payload = payload.model_copy(update={"summary": summary})

        await self._cache.put(fingerprint, payload)
        logger.info(
            "pricing.fused",
            fingerprint=fingerprint,
            forced=force_refresh,
            comps=payload.comps_count,
            sources=list(payload.sources),
            failed_sources=sorted(fetched.failures),
            median=payload.value_median,
        )
        return payload

    async def _fetch_all(self, identity: CardIdentity) -> _FetchResult:
        results = await asyncio.gather(
            *(self._fetch_one(slot, identity) for slot in self._slots),
            return_exceptions=True,
        )
        fetched = _FetchResult(comparables=[], answered=[], failures={})
        for slot, result in zip(self._slots, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                fetched.failures[slot.name] = str(result) or type(result).__name__
                continue
            fetched.answered.append(slot.name)
            fetched.comparables.extend(result)
        if not self._slots:
            fetched.failures["*"] = "no comparable sources configured"
        return fetched

    @staticmethod
    async def _throttled_fetch(slot: _SourceSlot, identity: CardIdentity) -> Sequence[Comparable]:
        async with slot.limiter:
            return await slot.source.fetch_comparables(identity)

    async def _fetch_one(self, slot: _SourceSlot, identity: CardIdentity) -> list[Comparable]:
        # The limiter wait counts against the source timeout.
        try:
            async with slot.breaker.guard(STEP_NAME):
                comparables = await call_with_timeout(
                    self._throttled_fetch(slot, identity),
                    timeout_seconds=self._settings.source_timeout_seconds,
                    step=STEP_NAME,
                    operation=f"source.{slot.name}",
                )
        except CircuitOpenError:
            record_source_request(slot.name, "circuit_open")
            logger.info("pricing.source.skipped", source=slot.name, reason="circuit_open")
            raise
        except Exception as exc:
            record_source_request(slot.name, "error")
            logger.warning("pricing.source.failed", source=slot.name, error=str(exc))
            raise
        record_source_request(slot.name, "ok")
        return list(comparables)

    async def _summarize(self, identity: CardIdentity, payload: PricingPayload) -> str | None:
        if self._reasoning is None or not self._settings.summary_enabled:
            return None
        prompt = (
            "Summarise the market valuation of this trading card in two sentences.\n"
            f"Card: {identity.name} ({identity.set_name or 'unknown set'} #{identity.number or '?'}), "
            f"rarity {identity.rarity or 'unknown'}, condition {identity.condition_bucket.value}.\n"
            f"Sold comparables over {payload.window_days} days: {payload.comps_count} "
            f"from {', '.join(payload.sources)}.\n"
            f"10th/50th/90th percentile USD: {payload.value_low:.2f} / "
            f"{payload.value_median:.2f} / {payload.value_high:.2f}; "
            f"volatility {payload.volatility:.2f}; confidence {payload.confidence:.2f}."
        )
        try:
            summary = await call_with_timeout(
                self._reasoning.infer(prompt),
                timeout_seconds=self._settings.summary_timeout_seconds,
                step=STEP_NAME,
                operation="reasoning.summary",
            )
        except Exception as exc:
            logger.warning("pricing.summary.failed", error=str(exc))
            return None
        return summary.strip() or None


__all__ = ["PricingAgent", "STEP_NAME"]
