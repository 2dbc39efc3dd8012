"""Core data contracts shared by the engine, checkpoint store and tickets."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .constants import DEFAULT_STEP_MAX_RETRIES, PLAN_VERSION

logger = logging.getLogger(__name__)

Phase = Literal["planning", "executing", "reviewing", "waiting", "completed"]
WaitingFor = Literal["approval", "answer"]
StepStatus = Literal["pending", "in_progress", "completed", "failed", "skipped"]
MessageRole = Literal["system", "user", "assistant", "tool"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenUsage(BaseModel):
    """Token counters reported by the reasoning engine."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def since(self, earlier: "TokenUsage") -> "TokenUsage":
        """Usage accumulated after ``earlier`` was observed."""
        return TokenUsage(
            input_tokens=max(0, self.input_tokens - earlier.input_tokens),
            output_tokens=max(0, self.output_tokens - earlier.output_tokens),
            total_tokens=max(0, self.total_tokens - earlier.total_tokens),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.input_tokens or self.output_tokens or self.total_tokens)


class PlanStep(BaseModel):
    """One unit of planned work."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    index: int
    title: str
    description: str
    status: StepStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = DEFAULT_STEP_MAX_RETRIES


class Plan(BaseModel):
    """Ordered list of steps produced by the planning phase."""

    version: int = PLAN_VERSION
    summary: str
    steps: List[PlanStep] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None

    def current_step(self) -> Optional[PlanStep]:
        """Return the single in-progress step, if any."""
        return next((s for s in self.steps if s.status == "in_progress"), None)

    def with_step(self, index: int, **fields: Any) -> "Plan":
        """Return a copy of the plan with ``fields`` merged into step ``index``."""
        steps = [
            step.model_copy(update=fields) if step.index == index else step
            for step in self.steps
        ]
        return self.model_copy(update={"steps": steps})


class ToolCall(BaseModel):
    """A tool invocation requested by the reasoning engine."""

    id: str = Field(default_factory=lambda: f"call-{uuid.uuid4().hex[:12]}")
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """Entry in the append-only workflow history."""

    role: MessageRole
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str, tool_calls: Optional[List[ToolCall]] = None
    ) -> "Message":
        return cls(role="assistant", content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


class HumanInput(BaseModel):
    """Input supplied by a person at a checkpoint."""

    type: WaitingFor
    approved: Optional[bool] = None
    answer: Optional[str] = None
    approved_by: Optional[str] = None


class WorkflowState(BaseModel):
    """Everything the engine operates on; the unit that gets checkpointed."""

    work_item_id: str
    title: str = ""
    description: str = ""
    messages: List[Message] = Field(default_factory=list)
    plan: Optional[Plan] = None
    current_step_index: int = 0
    phase: Phase = "planning"
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    waiting_for: Optional[WaitingFor] = None
    human_input: Optional[HumanInput] = None
    plan_approval_required: bool = True
    error: Optional[str] = None

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize for the checkpoint store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any]) -> "WorkflowState":
        return cls.model_validate(snapshot)

    def apply(self, update: Dict[str, Any]) -> "WorkflowState":
        """Merge a phase update into a new state.

        ``messages`` are appended and ``token_usage`` is summed; every other
        field is replaced. ``update`` may hold model instances or their JSON
        form (as replayed from a pending write).
        """
        data = self.model_dump()
        for key, value in update.items():
            if key == "messages":
                data["messages"] = data["messages"] + [
                    m.model_dump() if isinstance(m, BaseModel) else m for m in value
                ]
            elif key == "token_usage":
                delta = TokenUsage.model_validate(
                    value.model_dump() if isinstance(value, BaseModel) else value
                )
                data["token_usage"] = (self.token_usage + delta).model_dump()
            elif key in WorkflowState.model_fields:
                data[key] = value.model_dump() if isinstance(value, BaseModel) else value
            else:
                logger.warning(f"Ignoring unknown state field in update: {key}")
        return WorkflowState.model_validate(data)


class RunResult(BaseModel):
    """Outcome of a lifecycle ``run``/``resume`` call."""

    ticket_id: str
    phase: Phase
    success: bool
    error: Optional[str] = None
    waiting_for: Optional[WaitingFor] = None
    checkpoint_id: Optional[str] = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
