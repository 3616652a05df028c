"""Workflow orchestration: idempotency, ledger, retries, aggregation and events.

Import concrete components from their modules, e.g.
``from CollectIQ_core.orchestration.orchestrator import WorkflowOrchestrator``.
"""
