"""Utility modules shared across the workflow core."""

from .errors import ErrorKind, FoundationError, ProblemDetail, StepFailure


__all__ = ["ErrorKind", "FoundationError", "ProblemDetail", "StepFailure"]
