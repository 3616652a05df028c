"""Terminal failure handling: audit, failure marker and dead-letter publish."""

from __future__ import annotations

from typing import Any

import structlog

from CollectIQ_core.models import ProcessingFailure
from CollectIQ_core.observability.metrics import record_dead_letter
from CollectIQ_core.storage.audit import AuditLog, AuditRecord
from CollectIQ_core.storage.records import RecordStore
from CollectIQ_core.utils.errors import ErrorKind, StepFailure
from CollectIQ_core.utils.time import Clock, utc_now

from .events import DEAD_LETTER_TOPIC, CloudEventFactory, MessageBus, event_to_message
from .ledger import WorkflowExecution
from .resilience import call_with_timeout
from .retry import classify_error, to_step_failure

logger = structlog.get_logger(__name__)


class ErrorHandler:
    """Closes out executions that failed outright.

    The audit record is written first and unconditionally. A failure to
    publish the dead letter is logged and re-raised after the audit record and
    the failure marker are in place.
    """

    def __init__(
        self,
        audit: AuditLog,
        records: RecordStore,
        bus: MessageBus,
        *,
        events: CloudEventFactory | None = None,
        publish_timeout_seconds: float = 5.0,
        clock: Clock = utc_now,
    ) -> None:
        self._audit = audit
        self._records = records
        self._bus = bus
        self._events = events or CloudEventFactory()
        self._publish_timeout = publish_timeout_seconds
        self._clock = clock

    @staticmethod
    def classify(exc: BaseException) -> ErrorKind:
        return classify_error(exc)

    async def handle_terminal_failure(
        self,
        execution: WorkflowExecution,
        *,
        step: str,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> AuditRecord:
        failure: StepFailure = to_step_failure(error, step=step)
        now = self._clock()
        details = {
            "state": execution.state.value,
            "attempts": dict(execution.attempts),
            "branches": {name: state.value for name, state in execution.branches.items()},
            **(context or {}),
        }
        record = AuditRecord(
            execution_id=execution.execution_id,
            card_id=execution.card_id,
            step=step,
            error_kind=failure.kind,
            error=failure.problem,
            recorded_at=now,
            context=details,
        )
        await self._audit.append(record)
        await self._records.record_failure(
            ProcessingFailure(
                card_id=execution.card_id,
                execution_id=execution.execution_id,
                step=step,
                error_kind=failure.kind.value,
                message=str(failure),
                failed_at=now,
            )
        )
        logger.error(
            "orchestration.execution.failed",
            execution_id=execution.execution_id,
            card_id=execution.card_id,
            step=step,
            kind=failure.kind.value,
            error=str(failure),
        )

        event = self._events.dead_letter(
            execution_id=execution.execution_id,
            card_id=execution.card_id,
            step=step,
            error=failure.problem.model_dump(),
            context=details,
        )
        try:
            await call_with_timeout(
                self._bus.publish(DEAD_LETTER_TOPIC, event_to_message(event), key=execution.card_id),
                timeout_seconds=self._publish_timeout,
                step=step,
                operation="bus.dead_letter",
            )
        except Exception:
            logger.exception(
                "orchestration.dead_letter.publish_failed",
                execution_id=execution.execution_id,
            )
            raise
        record_dead_letter(step, failure.kind.value)
        return record


__all__ = ["ErrorHandler"]
