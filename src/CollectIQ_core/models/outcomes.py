"""Branch outcomes handed from the parallel agents to the aggregator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from CollectIQ_core.utils.errors import ErrorKind, ProblemDetail

PayloadT = TypeVar("PayloadT")


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BranchOutcome(Generic[PayloadT]):
    """Result of one parallel branch after its retry budget is spent.

    A successful outcome always carries a payload; a failed one always carries
    the error kind and problem detail of the last attempt.
    """

    branch: str
    status: OutcomeStatus
    payload: PayloadT | None = None
    error_kind: ErrorKind | None = None
    error: ProblemDetail | None = None
    attempts: int = 0

    def __post_init__(self) -> None:
        if self.status is OutcomeStatus.SUCCESS and self.payload is None:
            raise ValueError(f"Successful {self.branch} outcome requires a payload")
        if self.status is OutcomeStatus.FAILED and self.error_kind is None:
            raise ValueError(f"Failed {self.branch} outcome requires an error kind")

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @classmethod
    def success(cls, branch: str, payload: PayloadT, *, attempts: int = 1) -> BranchOutcome[PayloadT]:
        return cls(branch=branch, status=OutcomeStatus.SUCCESS, payload=payload, attempts=attempts)

    @classmethod
    def failed(
        cls,
        branch: str,
        *,
        kind: ErrorKind,
        error: ProblemDetail | None = None,
        attempts: int = 0,
    ) -> BranchOutcome[PayloadT]:
        return cls(
            branch=branch,
            status=OutcomeStatus.FAILED,
            error_kind=kind,
            error=error,
            attempts=attempts,
        )


__all__ = ["BranchOutcome", "OutcomeStatus"]
