"""Resilience helpers: per-dependency circuit breakers and call timeouts."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import structlog

from CollectIQ_core.observability.metrics import set_source_circuit_state
from CollectIQ_core.utils.errors import ErrorKind, StepFailure

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Finite state machine for circuit breakers."""

    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"


class CircuitOpenError(StepFailure):
    def __init__(self, service: str, *, step: str) -> None:
        super().__init__(
            f"Circuit breaker open for {service}",
            kind=ErrorKind.TRANSIENT,
            step=step,
            status=503,
            error_type="circuit-open",
        )
        self.service = service


@dataclass(slots=True)
class CircuitBreaker:
    """Circuit breaker with half-open recovery.

    Only failures that are not permanent count towards opening the circuit;
    a malformed request says nothing about the health of the dependency.
    """

    service: str
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60.0
    half_open_max_calls: int = 1
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        return self._state

    def _transition(self, state: CircuitState) -> None:
        if self._state == state:
            return
        logger.info(
            "orchestration.circuit.transition",
            service=self.service,
            previous_state=self._state.value,
            next_state=state.value,
        )
        self._state = state
        if state is CircuitState.OPEN:
            self._opened_at = self.clock()
            self._half_open_calls = 0
        elif state is CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
            self._half_open_calls = 0
        set_source_circuit_state(self.service, state.value)

    def _ready_for_half_open(self) -> bool:
        if self._opened_at is None:
            return False
        return (self.clock() - self._opened_at) >= self.recovery_timeout_seconds

    def allows_call(self) -> bool:
        """Whether a call would currently be let through, without side effects."""
        if self._state is CircuitState.OPEN:
            return self._ready_for_half_open()
        if self._state is CircuitState.HALF_OPEN:
            return self._half_open_calls < self.half_open_max_calls
        return True

    def record_success(self) -> None:
        self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return
        self._failure_count += 1
        logger.warning(
            "orchestration.circuit.failure",
            service=self.service,
            failure_count=self._failure_count,
            threshold=self.failure_threshold,
        )
        if self._failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def before_call(self, step: str) -> None:
        if self._state is CircuitState.OPEN:
            if not self._ready_for_half_open():
                raise CircuitOpenError(self.service, step=step)
            self._transition(CircuitState.HALF_OPEN)
        if self._state is CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                raise CircuitOpenError(self.service, step=step)
            self._half_open_calls += 1

    @asynccontextmanager
    async def guard(self, step: str) -> AsyncIterator[None]:
        """Async context manager protecting an operation with the breaker."""
        self.before_call(step)
        try:
            yield
        except StepFailure as exc:
            if exc.kind is not ErrorKind.PERMANENT:
                self.record_failure()
            raise
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()


async def call_with_timeout(
    awaitable: Awaitable[T],
    *,
    timeout_seconds: float,
    step: str,
    operation: str,
) -> T:
    """Await ``awaitable`` and convert a timeout into a transient step failure."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except TimeoutError as exc:
        logger.warning(
            "orchestration.timeout",
            operation=operation,
            step=step,
            timeout_seconds=timeout_seconds,
        )
        raise StepFailure(
            f"{operation} timed out after {timeout_seconds:g}s",
            kind=ErrorKind.TRANSIENT,
            step=step,
            status=504,
            error_type="timeout",
        ) from exc


__all__ = ["CircuitBreaker", "CircuitOpenError", "CircuitState", "call_with_timeout"]
