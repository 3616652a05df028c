"""Aggregator merging both branch outcomes into one persisted card record.

Outcome contract
----------------
Each branch outcome may reach the aggregator in one of three shapes and is
normalised by :func:`coerce_outcome` before use:

* a :class:`~CollectIQ_core.models.BranchOutcome` (used as is);
* the bare payload model (treated as a success);
* a step-wrapper mapping ``{"status": "success" | "failed", "payload" |
  "result": ..., "error_kind": ...}``. A mapping without ``status`` is
  validated as a bare payload.

Anything else is a :class:`TypeError`, which the retry policy classifies as
unknown and the orchestrator surfaces as an aggregation failure.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from CollectIQ_core.models import (
    AggregatedResult,
    AuthenticityPayload,
    BranchOutcome,
    CardIdentity,
    CompletionEvent,
    PricingPayload,
    RecordStatus,
)
from CollectIQ_core.storage.records import RecordStore
from CollectIQ_core.utils.errors import ErrorKind, ProblemDetail
from CollectIQ_core.utils.time import Clock, utc_now

from .events import COMPLETION_TOPIC, CloudEventFactory, MessageBus, event_to_message
from .resilience import call_with_timeout

logger = structlog.get_logger(__name__)

STEP_NAME = "aggregation"

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def coerce_outcome(branch: str, value: Any, payload_type: type[PayloadT]) -> BranchOutcome[PayloadT]:
    """Normalise ``value`` into a :class:`BranchOutcome` for ``branch``."""
    if isinstance(value, BranchOutcome):
        if value.succeeded and not isinstance(value.payload, payload_type):
            payload = payload_type.model_validate(value.payload)
            return BranchOutcome.success(branch, payload, attempts=value.attempts)
        return value
    if isinstance(value, payload_type):
        return BranchOutcome.success(branch, value)
    if isinstance(value, Mapping):
        if "status" not in value:
            return BranchOutcome.success(branch, payload_type.model_validate(dict(value)))
        status = str(value["status"]).lower()
        attempts = int(value.get("attempts", 0) or 0)
        if status == "success":
            inner = value.get("payload", value.get("result"))
            if inner is None:
                raise TypeError(f"{branch} outcome reports success without a payload")
            payload = inner if isinstance(inner, payload_type) else payload_type.model_validate(inner)
            return BranchOutcome.success(branch, payload, attempts=attempts or 1)
        if status == "failed":
            kind = ErrorKind(value.get("error_kind", ErrorKind.UNKNOWN.value))
            error = value.get("error")
            if isinstance(error, Mapping):
                error = ProblemDetail(
                    title=str(error.get("title", "Branch failed")),
                    status=int(error.get("status", 500)),
                    detail=error.get("detail"),
                )
            elif error is not None and not isinstance(error, ProblemDetail):
                error = ProblemDetail(title=str(error), status=500)
            return BranchOutcome.failed(branch, kind=kind, error=error, attempts=attempts)
        raise TypeError(f"Unrecognised {branch} outcome status {value['status']!r}")
    raise TypeError(f"Cannot interpret {type(value).__name__} as a {branch} outcome")


class Aggregator:
    def __init__(
        self,
        records: RecordStore,
        bus: MessageBus,
        *,
        events: CloudEventFactory | None = None,
        persist_timeout_seconds: float = 5.0,
        publish_timeout_seconds: float = 5.0,
        clock: Clock = utc_now,
    ) -> None:
        self._records = records
        self._bus = bus
        self._events = events or CloudEventFactory()
        self._persist_timeout = persist_timeout_seconds
        self._publish_timeout = publish_timeout_seconds
        self._clock = clock

    async def aggregate(
        self,
        execution_id: str,
        pricing_outcome: BranchOutcome[PricingPayload] | PricingPayload | Mapping[str, Any],
        authenticity_outcome: BranchOutcome[AuthenticityPayload] | AuthenticityPayload | Mapping[str, Any],
        *,
        card_id: str,
        image_ref: str,
        identity: CardIdentity | None = None,
        id_confidence: float | None = None,
    ) -> AggregatedResult:
        """Persist the merged record, then publish the completion event.

        Raises:
            ValueError: If both branches failed.
        """
        pricing = coerce_outcome("pricing", pricing_outcome, PricingPayload)
        authenticity = coerce_outcome("authenticity", authenticity_outcome, AuthenticityPayload)
        if not pricing.succeeded and not authenticity.succeeded:
            raise ValueError(f"Execution {execution_id} has no successful branch to aggregate")

        status = RecordStatus.COMPLETE if pricing.succeeded and authenticity.succeeded else RecordStatus.PARTIAL
        fields: dict[str, Any] = {
            "execution_id": execution_id,
            "card_id": card_id,
            "image_ref": image_ref,
            "status": status,
            "completed_at": self._clock(),
            "id_confidence": id_confidence,
        }
        if identity is not None:
            fields.update(
                name=identity.name,
                set_name=identity.set_name,
                number=identity.number,
                rarity=identity.rarity,
                condition=identity.condition,
            )
        if authenticity.succeeded and authenticity.payload is not None:
            auth = authenticity.payload
            fields.update(
                authenticity_score=auth.score,
                authenticity_signals=auth.signals,
                likely_counterfeit=auth.likely_counterfeit,
                authenticity_rationale=auth.rationale,
            )
        if pricing.succeeded and pricing.payload is not None:
            price = pricing.payload
            fields.update(
                value_low=price.value_low,
                value_median=price.value_median,
                value_high=price.value_high,
                comps_count=price.comps_count,
                sources=price.sources,
                pricing_confidence=price.confidence,
                valuation_summary=price.summary,
            )

        stored = await call_with_timeout(
            self._records.upsert(AggregatedResult(**fields)),
            timeout_seconds=self._persist_timeout,
            step=STEP_NAME,
            operation="records.upsert",
        )
        event = self._events.completion(
            CompletionEvent(
                execution_id=execution_id,
                card_id=card_id,
                status=stored.status,
                completed_at=stored.completed_at,
            )
        )
        await call_with_timeout(
            self._bus.publish(COMPLETION_TOPIC, event_to_message(event), key=card_id),
            timeout_seconds=self._publish_timeout,
            step=STEP_NAME,
            operation="bus.publish",
        )
        logger.info(
            "aggregation.completed",
            execution_id=execution_id,
            card_id=card_id,
            status=stored.status.value,
            version=stored.version,
            failed_branches=[o.branch for o in (pricing, authenticity) if not o.succeeded],
        )
        return stored


__all__ = ["Aggregator", "STEP_NAME", "coerce_outcome"]
