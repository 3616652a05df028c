"""Problem detail helpers and the workflow error taxonomy.

Key Responsibilities:
    - Provide RFC 7807 compliant data structures used by the gateway and the
      error handler when reporting failures
    - Supply a base exception that carries problem details for translation to
      API responses
    - Define the error kinds every workflow step is classified into

Collaborators:
    - Upstream: Adapters, agents and the orchestrator raise these exceptions
    - Downstream: The gateway serialises :class:`ProblemDetail` instances and
      the retry policy reads :class:`ErrorKind` to decide on another attempt

Side Effects:
    - None; helpers are pure data containers

Thread Safety:
    - Thread-safe; dataclasses are immutable aside from standard attribute
      mutation semantics
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================


class ErrorKind(str, Enum):
    """Retry classification attached to every step failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class ProblemDetail:
    """Lightweight problem details object compliant with RFC 7807."""

    title: str
    status: int
    detail: str | None = None
    type: str = "about:blank"
    instance: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def model_dump(self) -> dict[str, Any]:
        """Return a dictionary representation with optional fields dropped."""
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        extra = payload.pop("extra", None)
        if extra:
            payload.update(extra)
        return payload


class FoundationError(RuntimeError):
    """Base exception that carries a :class:`ProblemDetail` instance."""

    def __init__(
        self,
        message: str,
        *,
        status: int = 500,
        detail: str | None = None,
        type: str = "about:blank",
        instance: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialise the exception with structured problem detail attributes.

        Args:
            message: Human readable error summary.
            status: HTTP status code associated with the problem.
            detail: Optional detailed description of the failure.
            type: Problem type URI, defaults to ``about:blank``.
            instance: Optional URI reference identifying the specific occurrence.
            extra: Additional attributes included in the serialized payload.
        """
        super().__init__(message)
        self.problem = ProblemDetail(
            title=message,
            status=status,
            detail=detail,
            type=type,
            instance=instance,
            extra=dict(extra or {}),
        )


# ==============================================================================
# REQUEST ERRORS
# ==============================================================================


class InvalidSubmissionError(FoundationError):
    """Raised when a submit request is malformed."""

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            "Invalid submission",
            status=422,
            detail=message,
            type="https://collectiq.dev/problems/invalid-submission",
            extra={"errors": errors} if errors else None,
        )


class DuplicateKeyConflict(FoundationError):
    """Raised when a live idempotency key is reused with a different payload."""

    def __init__(self, key: str, *, execution_id: str) -> None:
        super().__init__(
            "Idempotency key conflict",
            status=409,
            detail=f"Key '{key}' is already bound to a different request",
            type="https://collectiq.dev/problems/idempotency-conflict",
            extra={"idempotency_key": key, "execution_id": execution_id},
        )
        self.key = key
        self.execution_id = execution_id


# ==============================================================================
# STEP ERRORS
# ==============================================================================


class StepFailure(FoundationError):
    """Raised when a workflow step fails.

    ``kind`` drives the retry policy: transient failures are retried within the
    step's budget, permanent failures never are, and unknown failures get a
    single retry before being treated as permanent.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        step: str | None = None,
        status: int = 500,
        detail: str | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(
            message,
            status=status,
            detail=detail,
            type=f"https://collectiq.dev/problems/{error_type or kind.value}",
            extra={"kind": kind.value, "step": step} if step else {"kind": kind.value},
        )
        self.kind = kind
        self.step = step
        self.error_type = error_type or kind.value

    @property
    def retriable(self) -> bool:
        return self.kind is not ErrorKind.PERMANENT


class AdapterError(StepFailure):
    """Raised by source, vision and reasoning adapters."""

    def __init__(
        self,
        message: str,
        *,
        adapter: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status: int = 502,
        detail: str | None = None,
    ) -> None:
        super().__init__(
            message,
            kind=kind,
            step=adapter,
            status=status,
            detail=detail,
            error_type="adapter",
        )
        self.adapter = adapter


class ExtractionError(StepFailure):
    """Raised when visual feature extraction fails."""

    def __init__(self, message: str, *, kind: ErrorKind, detail: str | None = None) -> None:
        super().__init__(
            message,
            kind=kind,
            step="extraction",
            status=503 if kind is ErrorKind.TRANSIENT else 422,
            detail=detail,
            error_type="extraction",
        )


class AllSourcesUnavailable(StepFailure):
    """Raised when every comparable sales source failed for one pricing call."""

    def __init__(self, failures: Mapping[str, str]) -> None:
        super().__init__(
            "No comparable sales source is available",
            kind=ErrorKind.TRANSIENT,
            step="pricing",
            status=503,
            detail="; ".join(f"{name}: {reason}" for name, reason in sorted(failures.items())),
            error_type="sources-unavailable",
        )
        self.failures = dict(failures)


class NoComparablesFound(StepFailure):
    """Raised when sources answered but returned no usable sales."""

    def __init__(self, fingerprint: str) -> None:
        super().__init__(
            "No pricing data available from any source",
            kind=ErrorKind.PERMANENT,
            step="pricing",
            status=404,
            detail=f"No comparable sales for card fingerprint {fingerprint}",
            error_type="no-comparables",
        )
        self.fingerprint = fingerprint


__all__ = [
    "AdapterError",
    "AllSourcesUnavailable",
    "DuplicateKeyConflict",
    "ErrorKind",
    "ExtractionError",
    "FoundationError",
    "InvalidSubmissionError",
    "NoComparablesFound",
    "ProblemDetail",
    "StepFailure",
]
