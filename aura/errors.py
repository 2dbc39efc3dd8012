"""Error taxonomy for aura.

Every error carries a stable ``code`` so presentation layers can map it to a
response without string matching.
"""

from __future__ import annotations

from typing import Optional


class AuraError(Exception):
    """Base class for all aura errors."""

    code = "AURA_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InputValidationError(AuraError):
    """Caller supplied input of the wrong shape."""

    code = "VALIDATION_ERROR"


class TicketNotFoundError(AuraError):
    code = "TICKET_NOT_FOUND"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Ticket not found: {ticket_id}")
        self.ticket_id = ticket_id


class InvalidTransitionError(AuraError):
    """Illegal ticket status change."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(
            f'Invalid status transition from "{from_status}" to "{to_status}"'
        )
        self.from_status = from_status
        self.to_status = to_status


class MaxTurnsExceededError(AuraError):
    code = "MAX_TURNS_EXCEEDED"

    def __init__(self, max_turns: int) -> None:
        super().__init__(f"Maximum turns exceeded: {max_turns}")
        self.max_turns = max_turns


class AgentNotRunningError(AuraError):
    """Resume requested for a ticket without any checkpoint."""

    code = "AGENT_NOT_RUNNING"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Agent is not running for ticket: {ticket_id}")
        self.ticket_id = ticket_id


class AgentBusyError(AuraError):
    """Another run/resume call for the same ticket is still in flight."""

    code = "AGENT_BUSY"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Agent is already running for ticket: {ticket_id}")
        self.ticket_id = ticket_id


class NoPlanError(AuraError):
    code = "NO_PLAN"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"No plan exists for ticket: {ticket_id}")
        self.ticket_id = ticket_id


class NoPendingApprovalError(AuraError):
    code = "NO_PENDING_APPROVAL"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"No pending approval for ticket: {ticket_id}")
        self.ticket_id = ticket_id


class NoPendingQuestionError(AuraError):
    code = "NO_PENDING_QUESTION"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"No pending question for ticket: {ticket_id}")
        self.ticket_id = ticket_id


class ToolExecutionError(AuraError):
    """A tool raised. Recorded in history, never fatal to the run."""

    code = "TOOL_EXECUTION_FAILED"

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f'Tool "{tool}" failed: {message}')
        self.tool = tool


class PlanParseError(AuraError):
    """The planning response was not the expected JSON document."""

    code = "PLAN_PARSE_ERROR"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to parse plan JSON: {detail}")


class ReasoningError(AuraError):
    """The reasoning engine failed to produce a response."""

    code = "LLM_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"LLM error: {message}")


class CheckpointNotFoundError(AuraError):
    code = "CHECKPOINT_NOT_FOUND"

    def __init__(self, work_item_id: str, checkpoint_id: str) -> None:
        super().__init__(
            f"Checkpoint not found: {checkpoint_id} (work item {work_item_id})"
        )
        self.work_item_id = work_item_id
        self.checkpoint_id = checkpoint_id


__all__ = [
    "AuraError",
    "InputValidationError",
    "TicketNotFoundError",
    "InvalidTransitionError",
    "MaxTurnsExceededError",
    "AgentNotRunningError",
    "AgentBusyError",
    "NoPlanError",
    "NoPendingApprovalError",
    "NoPendingQuestionError",
    "ToolExecutionError",
    "PlanParseError",
    "ReasoningError",
    "CheckpointNotFoundError",
]
