"""
Conditional edge functions for the worker graph.

These are not nodes; graph.add_conditional_edges() calls them to pick the
next node from the current state.
"""
from __future__ import annotations

from worker.state import Stage, WorkflowState


def stage_router(state: WorkflowState) -> str:
    """
    After a pipeline step.

    Returns: "ok" | "failed"
    """
    return "failed" if state.get("stage") == Stage.FAILED.value else "ok"


def renewal_router(state: WorkflowState) -> str:
    """
    After renewal_gate: a current certificate ends the run without touching
    the record.

    Returns: "due" | "not_due" | "failed"
    """
    stage = state.get("stage")
    if stage == Stage.FAILED.value:
        return "failed"
    if stage == Stage.NOT_DUE.value:
        return "not_due"
    return "due"
