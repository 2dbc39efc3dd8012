"""Aura: durable, resumable agent workflows with human checkpoints."""

from .checkpoint import CheckpointStore, get_checkpoint_store
from .config import AuraConfig, load_config
from .contracts import HumanInput, Plan, PlanStep, RunResult, TokenUsage, WorkflowState
from .engine import EngineRun, WorkflowEngine
from .lifecycle import LifecycleController
from .reasoning import Completion, PydanticAIReasoningEngine, ReasoningEngine
from .tickets import Ticket, TicketService

__version__ = "0.1.0"
__all__ = [
    "AuraConfig",
    "CheckpointStore",
    "Completion",
    "EngineRun",
    "HumanInput",
    "LifecycleController",
    "Plan",
    "PlanStep",
    "PydanticAIReasoningEngine",
    "ReasoningEngine",
    "RunResult",
    "Ticket",
    "TicketService",
    "TokenUsage",
    "WorkflowEngine",
    "WorkflowState",
    "get_checkpoint_store",
    "load_config",
]
