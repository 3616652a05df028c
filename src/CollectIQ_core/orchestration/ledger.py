"""Execution ledger tracking workflow state.

This module provides in-memory tracking of every workflow execution. It
implements a ledger pattern for maintaining execution lifecycle state,
transition history, per-step attempt counts and branch sub-states.

The ledger supports:
- Execution creation keyed by execution id
- State transitions validated against ``ALLOWED_TRANSITIONS``
- Branch sub-state tracking with a join guard before aggregation
- Per-step attempt counters and last error capture
- Metrics collection for observability

Thread Safety:
    Not thread-safe. All mutations happen on the event loop that owns the
    orchestrator.

Example:
    >>> ledger = ExecutionLedger()
    >>> execution = ledger.create(execution_id="exec-1", card_id="card-1")
    >>> ledger.transition("exec-1", WorkflowState.EXTRACTING, step="extraction")
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================
import builtins
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from CollectIQ_core.observability.metrics import (
    record_workflow_outcome,
    update_execution_state_metrics,
)
from CollectIQ_core.utils.errors import ProblemDetail
from CollectIQ_core.utils.time import Clock, utc_now

# ==============================================================================
# TYPE DEFINITIONS
# ==============================================================================


class WorkflowState(str, Enum):
    STARTED = "started"
    EXTRACTING = "extracting"
    EXTRACTION_FAILED = "extraction_failed"
    BRANCHES_RUNNING = "branches_running"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


class BranchState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


BRANCHES = ("pricing", "authenticity")
TERMINAL_STATES = {WorkflowState.COMPLETED, WorkflowState.FAILED}
ALLOWED_TRANSITIONS: dict[WorkflowState, set[WorkflowState]] = {
    WorkflowState.STARTED: {WorkflowState.EXTRACTING, WorkflowState.FAILED},
    WorkflowState.EXTRACTING: {
        WorkflowState.BRANCHES_RUNNING,
        WorkflowState.EXTRACTION_FAILED,
        WorkflowState.FAILED,
    },
    WorkflowState.EXTRACTION_FAILED: {WorkflowState.FAILED},
    WorkflowState.BRANCHES_RUNNING: {WorkflowState.AGGREGATING, WorkflowState.FAILED},
    WorkflowState.AGGREGATING: {WorkflowState.COMPLETED, WorkflowState.FAILED},
    WorkflowState.COMPLETED: set(),
    WorkflowState.FAILED: set(),
}

# ==============================================================================
# DATA MODELS
# ==============================================================================


@dataclass
class StateTransition:
    from_state: WorkflowState
    to_state: WorkflowState
    step: str | None
    reason: str | None
    timestamp: datetime


@dataclass
class WorkflowExecution:
    """Complete execution record with lifecycle tracking.

    Attributes:
        execution_id: Unique execution identifier.
        card_id: Card the execution produces a record for.
        state: Current workflow state.
        current_step: Step most recently started.
        attempts: Attempt count per step name.
        branches: Sub-state per parallel branch.
        last_error: Problem detail of the most recent step failure.
        result_status: ``complete`` or ``partial`` once completed.
    """

    execution_id: str
    card_id: str
    started_at: datetime
    state: WorkflowState = WorkflowState.STARTED
    current_step: str | None = None
    attempts: dict[str, int] = field(default_factory=dict)
    branches: dict[str, BranchState] = field(
        default_factory=lambda: {branch: BranchState.PENDING for branch in BRANCHES}
    )
    branch_errors: dict[str, ProblemDetail] = field(default_factory=dict)
    last_error: ProblemDetail | None = None
    history: list[StateTransition] = field(default_factory=list)
    metadata: dict[str, object] = field(default_factory=dict)
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    result_status: str | None = None

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def branches_settled(self) -> bool:
        return all(state is not BranchState.PENDING for state in self.branches.values())

    def snapshot(self) -> WorkflowExecution:
        """Return a copy suitable for external consumption."""
        return WorkflowExecution(
            execution_id=self.execution_id,
            card_id=self.card_id,
            started_at=self.started_at,
            state=self.state,
            current_step=self.current_step,
            attempts=dict(self.attempts),
            branches=dict(self.branches),
            branch_errors=dict(self.branch_errors),
            last_error=self.last_error,
            history=list(self.history),
            metadata=dict(self.metadata),
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            result_status=self.result_status,
        )


# ==============================================================================
# LEDGER
# ==============================================================================


class LedgerError(RuntimeError):
    """Raised when ledger operations fail due to invalid state or operations."""


class ExecutionLedger:
    """In-memory ledger of workflow executions.

    Running executions are always kept. Terminal executions are retained up
    to ``max_terminal_entries`` and evicted oldest first.
    """

    def __init__(self, *, clock: Clock = utc_now, max_terminal_entries: int = 1000) -> None:
        if max_terminal_entries < 1:
            raise ValueError("max_terminal_entries must be positive")
        self._entries: dict[str, WorkflowExecution] = {}
        self._active_by_card: dict[str, str] = {}
        self._terminal: deque[str] = deque()
        self._max_terminal = max_terminal_entries
        self._state_counts: Counter[WorkflowState] = Counter()
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create(
        self,
        *,
        execution_id: str,
        card_id: str,
        metadata: dict[str, object] | None = None,
    ) -> WorkflowExecution:
        if execution_id in self._entries:
            raise LedgerError(f"Execution {execution_id} already exists")
        now = self._clock()
        entry = WorkflowExecution(
            execution_id=execution_id,
            card_id=card_id,
            started_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        self._entries[execution_id] = entry
        self._active_by_card[card_id] = execution_id
        self._state_counts[entry.state] += 1
        self._publish_counts()
        return entry.snapshot()

    # ------------------------------------------------------------------
    # Mutation helpers
    # ------------------------------------------------------------------
    def _require(self, execution_id: str) -> WorkflowExecution:
        entry = self._entries.get(execution_id)
        if entry is None:
            raise LedgerError(f"Execution {execution_id} not found")
        return entry

    def transition(
        self,
        execution_id: str,
        state: WorkflowState,
        *,
        step: str | None = None,
        reason: str | None = None,
        result_status: str | None = None,
    ) -> WorkflowExecution:
        entry = self._require(execution_id)
        if state not in ALLOWED_TRANSITIONS[entry.state]:
            raise LedgerError(
                f"Invalid transition {entry.state.value} -> {state.value} for execution {execution_id}"
            )
        if state is WorkflowState.AGGREGATING and not entry.branches_settled:
            pending = sorted(name for name, value in entry.branches.items() if value is BranchState.PENDING)
            raise LedgerError(f"Cannot aggregate {execution_id}; branches still pending: {pending}")
        now = self._clock()
        entry.history.append(
            StateTransition(
                from_state=entry.state,
                to_state=state,
                step=step or entry.current_step,
                reason=reason,
                timestamp=now,
            )
        )
        self._state_counts[entry.state] -= 1
        self._state_counts[state] += 1
        entry.state = state
        if step:
            entry.current_step = step
        entry.updated_at = now
        if state in TERMINAL_STATES:
            entry.completed_at = now
            entry.result_status = result_status
            record_workflow_outcome(state.value, result_status)
            self._retire(entry)
        self._publish_counts()
        return entry.snapshot()

    def record_attempt(self, execution_id: str, step: str) -> int:
        entry = self._require(execution_id)
        entry.attempts[step] = entry.attempts.get(step, 0) + 1
        entry.current_step = step
        entry.updated_at = self._clock()
        return entry.attempts[step]

    def record_error(self, execution_id: str, error: ProblemDetail) -> None:
        entry = self._require(execution_id)
        entry.last_error = error
        entry.updated_at = self._clock()

    def settle_branch(
        self,
        execution_id: str,
        branch: str,
        state: BranchState,
        *,
        error: ProblemDetail | None = None,
    ) -> WorkflowExecution:
        entry = self._require(execution_id)
        if entry.state is not WorkflowState.BRANCHES_RUNNING:
            raise LedgerError(f"Execution {execution_id} is not running branches")
        if branch not in entry.branches:
            raise LedgerError(f"Unknown branch {branch}")
        if state is BranchState.PENDING:
            raise LedgerError("A branch can only settle as done or failed")
        if entry.branches[branch] is not BranchState.PENDING:
            raise LedgerError(f"Branch {branch} of {execution_id} already settled")
        entry.branches[branch] = state
        if error is not None:
            entry.branch_errors[branch] = error
            entry.last_error = error
        entry.updated_at = self._clock()
        return entry.snapshot()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def get(self, execution_id: str) -> WorkflowExecution | None:
        entry = self._entries.get(execution_id)
        return entry.snapshot() if entry else None

    def list(self, *, state: WorkflowState | None = None) -> builtins.list[WorkflowExecution]:
        items = (
            entry.snapshot()
            for entry in self._entries.values()
            if state is None or entry.state is state
        )
        return sorted(items, key=lambda item: item.started_at)

    def active_for_card(self, card_id: str) -> WorkflowExecution | None:
        """Return the non-terminal execution for ``card_id``, if one is running."""
        execution_id = self._active_by_card.get(card_id)
        return self.get(execution_id) if execution_id else None

    def release_card(self, execution_id: str) -> None:
        """Stop treating ``execution_id`` as its card's running execution."""
        entry = self._entries.get(execution_id)
        if entry is not None and self._active_by_card.get(entry.card_id) == execution_id:
            del self._active_by_card[entry.card_id]

    def __len__(self) -> int:
        return len(self._entries)

    def _retire(self, entry: WorkflowExecution) -> None:
        self.release_card(entry.execution_id)
        self._terminal.append(entry.execution_id)
        while len(self._terminal) > self._max_terminal:
            evicted = self._entries.pop(self._terminal.popleft())
            self._state_counts[evicted.state] -= 1

    def _publish_counts(self) -> None:
        update_execution_state_metrics({state.value: self._state_counts[state] for state in WorkflowState})


__all__ = [
    "ALLOWED_TRANSITIONS",
    "BRANCHES",
    "BranchState",
    "ExecutionLedger",
    "LedgerError",
    "StateTransition",
    "TERMINAL_STATES",
    "WorkflowExecution",
    "WorkflowState",
]
