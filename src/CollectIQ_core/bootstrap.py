"""Wiring of settings, adapters and components into a ready orchestrator."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from CollectIQ_core.adapters.base import ComparablesSource, ReasoningService, VisionExtractor
from CollectIQ_core.adapters.http import (
    HttpAdapter,
    HttpComparablesSource,
    HttpReasoningService,
    HttpVisionExtractor,
)
from CollectIQ_core.agents.authenticity import AuthenticityAgent
from CollectIQ_core.agents.pricing import PricingAgent
from CollectIQ_core.config.settings import AppSettings, get_settings
from CollectIQ_core.orchestration.aggregator import Aggregator
from CollectIQ_core.orchestration.error_handler import ErrorHandler
from CollectIQ_core.orchestration.events import CloudEventFactory, InMemoryMessageBus, MessageBus
from CollectIQ_core.orchestration.extraction import FeatureExtractionStep
from CollectIQ_core.orchestration.idempotency import (
    IdempotencyGuard,
    IdempotencyStore,
    InMemoryIdempotencyStore,
)
from CollectIQ_core.orchestration.ledger import ExecutionLedger
from CollectIQ_core.orchestration.orchestrator import WorkflowOrchestrator
from CollectIQ_core.orchestration.retry import RetryPolicy
from CollectIQ_core.services.authenticity.references import ReferenceProvider, StaticReferenceProvider
from CollectIQ_core.storage.audit import AuditLog, InMemoryAuditLog
from CollectIQ_core.storage.pricing_cache import PricingCache
from CollectIQ_core.storage.records import InMemoryRecordStore, RecordStore
from CollectIQ_core.utils.time import Clock, utc_now


@dataclass(slots=True)
class CoreServices:
    """Everything a host process needs to submit and observe executions."""

    orchestrator: WorkflowOrchestrator
    ledger: ExecutionLedger
    records: RecordStore
    audit: AuditLog
    bus: MessageBus
    cache: PricingCache
    pricing: PricingAgent
    settings: AppSettings
    owned_adapters: list[HttpAdapter] = field(default_factory=list)

    async def aclose(self) -> None:
        """Stop running executions, then close the HTTP clients built from settings."""
        await self.orchestrator.shutdown()
        for adapter in self.owned_adapters:
            await adapter.aclose()


def sources_from_settings(settings: AppSettings) -> list[ComparablesSource]:
    sources: list[ComparablesSource] = []
    for source in settings.pricing.sources:
        if not source.enabled:
            continue
        api_key = source.api_key.get_secret_value() if source.api_key else None
        sources.append(HttpComparablesSource(source.name, source.base_url, api_key=api_key))
    return sources


def reasoning_from_settings(settings: AppSettings) -> ReasoningService | None:
    if settings.reasoning.api_key is None:
        return None
    return HttpReasoningService(
        settings.reasoning.base_url,
        model=settings.reasoning.model,
        temperature=settings.reasoning.temperature,
        max_tokens=settings.reasoning.max_tokens,
        api_key=settings.reasoning.api_key.get_secret_value(),
    )


def build_services(
    settings: AppSettings | None = None,
    *,
    vision: VisionExtractor | None = None,
    sources: Sequence[ComparablesSource] | None = None,
    reasoning: ReasoningService | None = None,
    references: ReferenceProvider | None = None,
    records: RecordStore | None = None,
    audit: AuditLog | None = None,
    bus: MessageBus | None = None,
    idempotency_store: IdempotencyStore | None = None,
    clock: Clock = utc_now,
) -> CoreServices:
    """Assemble the workflow core, filling unspecified collaborators from settings.

    Raises:
        RuntimeError: If no vision capability is given and none is configured.
    """
    settings = settings or get_settings()
    owned: list[HttpAdapter] = []
    if vision is None:
        if not settings.extraction.base_url:
            raise RuntimeError("No vision extractor configured (set CIQ_EXTRACTION__BASE_URL)")
        vision = HttpVisionExtractor(settings.extraction.base_url)
        owned.append(vision)
    if sources is None:
        sources = sources_from_settings(settings)
        owned.extend(source for source in sources if isinstance(source, HttpAdapter))
    if reasoning is None:
        reasoning = reasoning_from_settings(settings)
        if isinstance(reasoning, HttpAdapter):
            owned.append(reasoning)

    records = records or InMemoryRecordStore()
    audit = audit or InMemoryAuditLog()
    bus = bus or InMemoryMessageBus()
    events = CloudEventFactory()
    retry_policy = RetryPolicy.from_settings(settings.workflow.retry)
    ledger = ExecutionLedger(clock=clock, max_terminal_entries=settings.workflow.ledger_retention)
    cache = PricingCache(ttl_seconds=settings.pricing.cache_ttl_seconds, clock=clock)

    pricing = PricingAgent(
        sources,
        cache,
        reasoning=reasoning,
        settings=settings.pricing,
        rate_limits={source.name: source.requests_per_minute for source in settings.pricing.sources},
        clock=clock,
    )
    authenticity = AuthenticityAgent(
        reasoning,
        settings=settings.authenticity,
        retry_policy=retry_policy,
    )
    orchestrator = WorkflowOrchestrator(
        guard=IdempotencyGuard(
            idempotency_store or InMemoryIdempotencyStore(),
            ttl_seconds=settings.idempotency.ttl_seconds,
            clock=clock,
        ),
        ledger=ledger,
        extraction=FeatureExtractionStep(vision, timeout_seconds=settings.extraction.timeout_seconds),
        pricing=pricing,
        authenticity=authenticity,
        references=references or StaticReferenceProvider(),
        aggregator=Aggregator(
            records,
            bus,
            events=events,
            persist_timeout_seconds=settings.storage.persist_timeout_seconds,
            publish_timeout_seconds=settings.storage.publish_timeout_seconds,
            clock=clock,
        ),
        error_handler=ErrorHandler(
            audit,
            records,
            bus,
            events=events,
            publish_timeout_seconds=settings.storage.publish_timeout_seconds,
            clock=clock,
        ),
        retry_policy=retry_policy,
        aggregation_timeout_seconds=settings.workflow.aggregation_timeout_seconds,
    )
    return CoreServices(
        orchestrator=orchestrator,
        ledger=ledger,
        records=records,
        audit=audit,
        bus=bus,
        cache=cache,
        pricing=pricing,
        settings=settings,
        owned_adapters=owned,
    )


__all__ = ["CoreServices", "build_services", "reasoning_from_settings", "sources_from_settings"]
