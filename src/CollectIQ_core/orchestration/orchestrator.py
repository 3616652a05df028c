"""Workflow orchestrator driving one card photo to a persisted record.

Key Responsibilities:
    - Validate submissions and gate them through the idempotency guard
    - Run every admitted execution as its own asyncio task
    - Drive the state machine recorded in the execution ledger: extraction,
      the two parallel branches joined before aggregation, then completion
    - Wrap each step in the shared retry policy and an OpenTelemetry span
    - Route every outright failure through the error handler

Collaborators:
    - Upstream: the gateway and in-process callers use :meth:`submit`,
      :meth:`wait` and :meth:`execute`
    - Downstream: feature extraction, pricing and authenticity agents,
      reference provider, aggregator and error handler

Side Effects:
    - Creates background tasks, mutates the ledger and emits metrics and spans

Thread Safety:
    - Bound to the event loop that calls :meth:`submit`
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================
import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any, TypeVar

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from CollectIQ_core.agents.authenticity import AuthenticityAgent
from CollectIQ_core.agents.pricing import PricingAgent
from CollectIQ_core.models import (
    AuthenticityPayload,
    BranchOutcome,
    CardIdentity,
    CardSubmission,
    FeatureEnvelope,
)
from CollectIQ_core.observability.metrics import observe_step_duration
from CollectIQ_core.services.authenticity.references import ReferenceProvider
from CollectIQ_core.utils.errors import ErrorKind, InvalidSubmissionError, StepFailure
from CollectIQ_core.utils.logging import workflow_scope

from .aggregator import Aggregator
from .error_handler import ErrorHandler
from .extraction import FeatureExtractionStep
from .idempotency import IdempotencyGuard, hash_request
from .ledger import BranchState, ExecutionLedger, LedgerError, WorkflowExecution, WorkflowState
from .resilience import call_with_timeout
from .retry import RetryPolicy, to_step_failure

logger = structlog.get_logger(__name__)
_TRACER = trace.get_tracer(__name__)

T = TypeVar("T")

# ==============================================================================
# DATA MODELS
# ==============================================================================


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    """Answer to a submit request."""

    accepted: bool
    execution_id: str
    card_id: str


# ==============================================================================
# ORCHESTRATOR
# ==============================================================================


class WorkflowOrchestrator:
    def __init__(
        self,
        *,
        guard: IdempotencyGuard,
        ledger: ExecutionLedger,
        extraction: FeatureExtractionStep,
        pricing: PricingAgent,
        authenticity: AuthenticityAgent,
        references: ReferenceProvider,
        aggregator: Aggregator,
        error_handler: ErrorHandler,
        retry_policy: RetryPolicy | None = None,
        aggregation_timeout_seconds: float = 10.0,
    ) -> None:
        self._guard = guard
        self._ledger = ledger
        self._extraction = extraction
        self._pricing = pricing
        self._authenticity = authenticity
        self._references = references
        self._aggregator = aggregator
        self._errors = error_handler
        self._retry = retry_policy or RetryPolicy()
        self._aggregation_timeout = aggregation_timeout_seconds
        self._tasks: dict[str, asyncio.Task[WorkflowExecution]] = {}
        self._admission_lock = asyncio.Lock()

    @property
    def ledger(self) -> ExecutionLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    async def submit(self, request: CardSubmission | Mapping[str, Any]) -> SubmissionResult:
        """Admit a submission and schedule its execution.

        Returns as soon as the execution is scheduled. A duplicate submission
        resolves to the execution already bound to its idempotency key, and a
        submission for a card that is still being processed resolves to that
        running execution.

        Raises:
            InvalidSubmissionError: If the request is malformed.
            DuplicateKeyConflict: If the key is live for a different payload.
        """
        submission = self._validate(request)
        async with self._admission_lock:
            in_flight = self._ledger.active_for_card(submission.card_id)
            admission = await self._guard.admit(
                submission.idempotency_key,
                hash_request(submission.request_fingerprint()),
                execution_id=in_flight.execution_id if in_flight else None,
            )
            if not admission.admitted or in_flight is not None:
                if admission.admitted:
                    logger.info(
                        "orchestration.execution.in_flight",
                        execution_id=admission.execution_id,
                        card_id=submission.card_id,
                    )
                return SubmissionResult(
                    accepted=False,
                    execution_id=admission.execution_id,
                    card_id=submission.card_id,
                )

            execution_id = admission.execution_id
            self._ledger.create(
                execution_id=execution_id,
                card_id=submission.card_id,
                metadata={
                    "idempotency_key": submission.idempotency_key,
                    "image_ref": submission.image_ref,
                    "force_refresh": submission.force_refresh,
                },
            )
        task = asyncio.create_task(self.run(execution_id, submission), name=f"workflow-{execution_id}")
        self._tasks[execution_id] = task
        task.add_done_callback(partial(self._task_done, execution_id))
        logger.info(
            "orchestration.execution.scheduled",
            execution_id=execution_id,
            card_id=submission.card_id,
            force_refresh=submission.force_refresh,
        )
        return SubmissionResult(accepted=True, execution_id=execution_id, card_id=submission.card_id)

    async def wait(self, execution_id: str, *, timeout: float | None = None) -> WorkflowExecution:
        """Wait for ``execution_id`` to stop running and return its snapshot."""
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        snapshot = self._ledger.get(execution_id)
        if snapshot is None:
            raise KeyError(execution_id)
        return snapshot

    async def execute(self, request: CardSubmission | Mapping[str, Any]) -> WorkflowExecution:
        """Submit and wait; convenience for in-process callers and tests."""
        result = await self.submit(request)
        return await self.wait(result.execution_id)

    async def shutdown(self) -> None:
        """Cancel running executions and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    def _validate(request: CardSubmission | Mapping[str, Any]) -> CardSubmission:
        if isinstance(request, CardSubmission):
            return request
        try:
            return CardSubmission.model_validate(request)
        except ValidationError as exc:
            raise InvalidSubmissionError(
                "Submission failed validation",
                errors=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

    def _task_done(self, execution_id: str, task: asyncio.Task[WorkflowExecution]) -> None:
        self._tasks.pop(execution_id, None)
        if task.cancelled():
            logger.warning("orchestration.execution.cancelled", execution_id=execution_id)
        elif (exc := task.exception()) is not None:
            logger.error("orchestration.execution.crashed", execution_id=execution_id, error=str(exc))
        else:
            return
        # A task that never reached a terminal state must not block its card.
        self._ledger.release_card(execution_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def run(self, execution_id: str, submission: CardSubmission) -> WorkflowExecution:
        """Drive one admitted execution to a terminal state."""
        with workflow_scope(execution_id, submission.card_id), _TRACER.start_as_current_span("workflow.execution") as span:
            span.set_attribute("collectiq.execution_id", execution_id)
            span.set_attribute("collectiq.card_id", submission.card_id)
            started = time.perf_counter()
            await self._drive(execution_id, submission)
            snapshot = self._snapshot(execution_id)
            logger.info(
                "orchestration.execution.finished",
                execution_id=execution_id,
                state=snapshot.state.value,
                result=snapshot.result_status,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return snapshot

    async def _drive(self, execution_id: str, submission: CardSubmission) -> None:
        ledger = self._ledger
        ledger.transition(execution_id, WorkflowState.EXTRACTING, step="extraction")
        try:
            envelope = await self._step(
                execution_id,
                "extraction",
                lambda: self._extraction.extract(submission.image_ref),
            )
        except StepFailure as failure:
            ledger.transition(
                execution_id,
                WorkflowState.EXTRACTION_FAILED,
                step="extraction",
                reason=str(failure),
            )
            await self._fail(execution_id, step="extraction", error=failure)
            return

        ledger.transition(execution_id, WorkflowState.BRANCHES_RUNNING, step="branches")
        identity = self._resolve_identity(submission, envelope)
        pricing_task = asyncio.create_task(
            self._branch(
                execution_id,
                "pricing",
                lambda: self._pricing.price(identity, envelope, force_refresh=submission.force_refresh),
            )
        )
        authenticity_task = asyncio.create_task(
            self._branch(execution_id, "authenticity", lambda: self._assess(identity, envelope))
        )
        pricing, authenticity = await asyncio.gather(pricing_task, authenticity_task)

        if not pricing.succeeded and not authenticity.succeeded:
            failure = StepFailure(
                "Both analysis branches failed",
                kind=ErrorKind.PERMANENT,
                step="branches",
                status=502,
                error_type="branches-failed",
            )
            await self._fail(
                execution_id,
                step="branches",
                error=failure,
                context={
                    "pricing_error": pricing.error.model_dump() if pricing.error else None,
                    "authenticity_error": authenticity.error.model_dump() if authenticity.error else None,
                },
            )
            return

        ledger.transition(execution_id, WorkflowState.AGGREGATING, step="aggregation")
        try:
            result = await self._step(
                execution_id,
                "aggregation",
                lambda: call_with_timeout(
                    self._aggregator.aggregate(
                        execution_id,
                        pricing,
                        authenticity,
                        card_id=submission.card_id,
                        image_ref=submission.image_ref,
                        identity=identity,
                        id_confidence=envelope.id_confidence,
                    ),
                    timeout_seconds=self._aggregation_timeout,
                    step="aggregation",
                    operation="aggregator.aggregate",
                ),
            )
        except StepFailure as failure:
            await self._fail(execution_id, step="aggregation", error=failure)
            return
        ledger.transition(
            execution_id,
            WorkflowState.COMPLETED,
            step="aggregation",
            result_status=result.status.value,
        )

    async def _step(self, execution_id: str, step: str, operation: Callable[[], Awaitable[T]]) -> T:
        started = time.perf_counter()
        with _TRACER.start_as_current_span(f"workflow.{step}") as span:
            try:
                result = await self._retry.run(
                    operation,
                    step=step,
                    on_attempt=lambda _: self._ledger.record_attempt(execution_id, step),
                )
            except StepFailure as failure:
                span.record_exception(failure)
                span.set_status(Status(StatusCode.ERROR, str(failure)))
                observe_step_duration(step, "failed", time.perf_counter() - started)
                logger.warning(
                    "orchestration.step.failure",
                    step=step,
                    kind=failure.kind.value,
                    error=str(failure),
                )
                raise
        observe_step_duration(step, "ok", time.perf_counter() - started)
        return result

    async def _branch(
        self,
        execution_id: str,
        branch: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> BranchOutcome[Any]:
        try:
            payload = await self._step(execution_id, branch, operation)
        except StepFailure as failure:
            snapshot = self._ledger.settle_branch(
                execution_id, branch, BranchState.FAILED, error=failure.problem
            )
            return BranchOutcome.failed(
                branch,
                kind=failure.kind,
                error=failure.problem,
                attempts=snapshot.attempts.get(branch, 0),
            )
        snapshot = self._ledger.settle_branch(execution_id, branch, BranchState.DONE)
        return BranchOutcome.success(branch, payload, attempts=snapshot.attempts.get(branch, 0))

    async def _assess(self, identity: CardIdentity, envelope: FeatureEnvelope) -> AuthenticityPayload:
        reference = await self._references.reference_for(identity)
        return await self._authenticity.assess(envelope, reference)

    def _snapshot(self, execution_id: str) -> WorkflowExecution:
        snapshot = self._ledger.get(execution_id)
        if snapshot is None:
            raise LedgerError(f"Execution {execution_id} not found")
        return snapshot

    @staticmethod
    def _resolve_identity(submission: CardSubmission, envelope: FeatureEnvelope) -> CardIdentity:
        return (submission.identity or CardIdentity()).merged_with(envelope.identity)

    async def _fail(
        self,
        execution_id: str,
        *,
        step: str,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        failure = to_step_failure(error, step=step)
        self._ledger.record_error(execution_id, failure.problem)
        snapshot = self._snapshot(execution_id)
        await self._errors.handle_terminal_failure(snapshot, step=step, error=failure, context=context)
        self._ledger.transition(execution_id, WorkflowState.FAILED, step=step, reason=str(failure))


__all__ = ["SubmissionResult", "WorkflowOrchestrator"]
