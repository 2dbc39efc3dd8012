"""Routing between workflow phases."""

from __future__ import annotations

import logging

from ..contracts import WorkflowState

logger = logging.getLogger(__name__)

END = "end"


def route_from_start(state: WorkflowState) -> str:
    """Pick the first phase of an invocation from the stored state."""

    if state.plan is not None:
        if state.phase == "waiting" or state.waiting_for:
            return "wait"
        if state.phase == "reviewing" and state.current_step_index >= len(state.plan.steps):
            # every step is done; only the final review is left
            return "reviewing"
        if state.phase in ("executing", "reviewing"):
            return "executing"
    return "planning"


def route_after(phase_name: str, state: WorkflowState) -> str:
    """Pick the phase that follows ``phase_name`` given the merged state."""

    if state.phase == "completed":
        target = END
    elif state.phase == "waiting":
        # a wait that consumed no input suspends the invocation
        target = END if phase_name == "wait" else "wait"
    else:
        target = state.phase
    logger.debug(f"Routing {state.work_item_id}: {phase_name} -> {target}")
    return target
