"""Workflow engine: phases, routing and the checkpointing driver loop."""

from .phases import PHASES, PhaseContext, executing, parse_plan, planning, reviewing, wait
from .routing import END, route_after, route_from_start
from .runner import EngineRun, WorkflowEngine, WorkflowObserver

__all__ = [
    "PHASES",
    "PhaseContext",
    "planning",
    "executing",
    "reviewing",
    "wait",
    "parse_plan",
    "END",
    "route_from_start",
    "route_after",
    "EngineRun",
    "WorkflowEngine",
    "WorkflowObserver",
]
