"""Central retry policy and error classification for workflow steps.

Every step (extraction, both branches, aggregation) runs through
:meth:`RetryPolicy.run`, so the budget, backoff and classification rules live
in one place. Transient errors are retried until the attempt budget is spent,
unknown errors are retried ``unknown_retries`` times and then treated as
permanent, and permanent errors are never retried.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential_jitter

from CollectIQ_core.adapters.http import classify_status
from CollectIQ_core.config.settings import RetrySettings
from CollectIQ_core.observability.metrics import record_step_attempt, record_step_failure
from CollectIQ_core.utils.errors import ErrorKind, StepFailure

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised by a step onto an :class:`ErrorKind`."""
    if isinstance(exc, StepFailure):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, ValidationError):
        return ErrorKind.PERMANENT
    return ErrorKind.UNKNOWN


def to_step_failure(exc: BaseException, *, step: str) -> StepFailure:
    """Wrap a foreign exception so downstream code only deals with ``StepFailure``."""
    if isinstance(exc, StepFailure):
        return exc
    return StepFailure(
        str(exc) or type(exc).__name__,
        kind=classify_error(exc),
        step=step,
        error_type=type(exc).__name__,
    )


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget with exponential backoff and jitter."""

    max_attempts: int = 3
    initial_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0
    jitter_seconds: float = 0.25
    unknown_retries: int = 1

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            initial_backoff_seconds=settings.initial_backoff_seconds,
            max_backoff_seconds=settings.max_backoff_seconds,
            jitter_seconds=settings.jitter_seconds,
            unknown_retries=settings.unknown_retries,
        )

    def should_retry(self, kind: ErrorKind, *, unknown_failures: int) -> bool:
        if kind is ErrorKind.TRANSIENT:
            return True
        if kind is ErrorKind.UNKNOWN:
            return unknown_failures <= self.unknown_retries
        return False

    def _build(self, step: str, attempts: int, retry: Callable[[RetryCallState], bool]) -> AsyncRetrying:
        def log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "orchestration.step.retry",
                step=step,
                attempt=state.attempt_number,
                max_attempts=attempts,
                error=str(exc) if exc else None,
                kind=classify_error(exc).value if exc else None,
                sleep_seconds=round(state.upcoming_sleep, 3),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(
                initial=self.initial_backoff_seconds,
                max=self.max_backoff_seconds,
                jitter=self.jitter_seconds,
            ),
            retry=retry,
            before_sleep=log_retry,
            reraise=True,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        step: str,
        max_attempts: int | None = None,
        on_attempt: Callable[[int], None] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the budget is exhausted.

        Raises:
            StepFailure: The failure of the last attempt, foreign exceptions
                wrapped via :func:`to_step_failure`.
        """
        attempts = max_attempts or self.max_attempts
        unknown_failures = 0

        def retry(state: RetryCallState) -> bool:
            nonlocal unknown_failures
            if state.outcome is None or not state.outcome.failed:
                return False
            kind = classify_error(state.outcome.exception())
            if kind is ErrorKind.UNKNOWN:
                unknown_failures += 1
            return self.should_retry(kind, unknown_failures=unknown_failures)

        async for attempt in self._build(step, attempts, retry):
            with attempt:
                number = attempt.retry_state.attempt_number
                record_step_attempt(step)
                if on_attempt is not None:
                    on_attempt(number)
                try:
                    return await operation()
                except Exception as exc:
                    failure = to_step_failure(exc, step=step)
                    record_step_failure(step, failure.kind.value)
                    if failure is exc:
                        raise
                    raise failure from exc
        raise RuntimeError("unreachable")  # pragma: no cover - tenacity exhausts attempts


__all__ = ["RetryPolicy", "classify_error", "to_step_failure"]
