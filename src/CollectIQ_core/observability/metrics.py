"""Prometheus metrics for the card valuation workflow.

Key Responsibilities:
    - Define counters, gauges and histograms for executions, steps, caches,
      idempotency admissions, comparable sources and dead letters
    - Expose small recording helpers so call-sites never touch label plumbing

Collaborators:
    - Upstream: Orchestrator, ledger, pricing cache, idempotency guard, error
      handler and the pricing agent call the helpers
    - Downstream: Prometheus scrapes the default registry

Thread Safety:
    - Thread-safe: all metric operations use atomic Prometheus operations
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from collections.abc import Mapping

from prometheus_client import Counter, Gauge, Histogram

# ==============================================================================
# METRIC DEFINITIONS
# ==============================================================================

WORKFLOW_EXECUTIONS = Gauge(
    "collectiq_workflow_executions",
    "Workflow executions currently recorded per state",
    ["state"],
)

WORKFLOW_OUTCOMES_TOTAL = Counter(
    "collectiq_workflow_outcomes_total",
    "Workflow executions that reached a terminal state",
    ["state", "result"],
)

STEP_ATTEMPTS_TOTAL = Counter(
    "collectiq_step_attempts_total",
    "Attempts made per workflow step",
    ["step"],
)

STEP_FAILURES_TOTAL = Counter(
    "collectiq_step_failures_total",
    "Failed step attempts by error kind",
    ["step", "kind"],
)

STEP_DURATION_SECONDS = Histogram(
    "collectiq_step_duration_seconds",
    "Wall-clock duration of workflow steps including retries",
    ["step", "outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

PRICING_CACHE_LOOKUPS_TOTAL = Counter(
    "collectiq_pricing_cache_lookups_total",
    "Pricing cache lookups by result",
    ["result"],
)

PRICING_CACHE_SIZE = Gauge(
    "collectiq_pricing_cache_entries",
    "Number of fingerprints held in the pricing cache",
)

IDEMPOTENCY_DECISIONS_TOTAL = Counter(
    "collectiq_idempotency_decisions_total",
    "Idempotency guard decisions",
    ["decision"],
)

SOURCE_REQUESTS_TOTAL = Counter(
    "collectiq_comparable_source_requests_total",
    "Comparable sales source calls by outcome",
    ["source", "outcome"],
)

SOURCE_CIRCUIT_STATE = Gauge(
    "collectiq_comparable_source_circuit_state",
    "Circuit breaker state per source (0=closed, 1=half-open, 2=open)",
    ["source"],
)

DEAD_LETTERS_TOTAL = Counter(
    "collectiq_dead_letters_total",
    "Executions routed to the dead-letter channel",
    ["step", "kind"],
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}

# ==============================================================================
# RECORDING HELPERS
# ==============================================================================


def update_execution_state_metrics(counts: Mapping[str, int]) -> None:
    """Publish per-state execution counts from the ledger."""
    for state, count in counts.items():
        WORKFLOW_EXECUTIONS.labels(state=state).set(count)


def record_workflow_outcome(state: str, result: str | None) -> None:
    WORKFLOW_OUTCOMES_TOTAL.labels(state=state, result=result or "none").inc()


def record_step_attempt(step: str) -> None:
    STEP_ATTEMPTS_TOTAL.labels(step=step).inc()


def record_step_failure(step: str, kind: str) -> None:
    STEP_FAILURES_TOTAL.labels(step=step, kind=kind).inc()


def observe_step_duration(step: str, outcome: str, duration_seconds: float) -> None:
    STEP_DURATION_SECONDS.labels(step=step, outcome=outcome).observe(duration_seconds)


def record_cache_lookup(hit: bool) -> None:
    PRICING_CACHE_LOOKUPS_TOTAL.labels(result="hit" if hit else "miss").inc()


def set_cache_size(size: int) -> None:
    PRICING_CACHE_SIZE.set(size)


def record_idempotency_decision(decision: str) -> None:
    IDEMPOTENCY_DECISIONS_TOTAL.labels(decision=decision).inc()


def record_source_request(source: str, outcome: str) -> None:
    SOURCE_REQUESTS_TOTAL.labels(source=source, outcome=outcome).inc()


def set_source_circuit_state(source: str, state: str) -> None:
    SOURCE_CIRCUIT_STATE.labels(source=source).set(_CIRCUIT_STATE_VALUES.get(state, 0))


def record_dead_letter(step: str, kind: str) -> None:
    DEAD_LETTERS_TOTAL.labels(step=step, kind=kind).inc()


__all__ = [
    "observe_step_duration",
    "record_cache_lookup",
    "record_dead_letter",
    "record_idempotency_decision",
    "record_source_request",
    "record_step_attempt",
    "record_step_failure",
    "record_workflow_outcome",
    "set_cache_size",
    "set_source_circuit_state",
    "update_execution_state_metrics",
]
