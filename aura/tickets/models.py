"""Ticket data model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..constants import DEFAULT_MAX_TURNS
from ..contracts import Plan, TokenUsage, utcnow

TicketStatus = Literal[
    "draft",
    "pending_approval",
    "approved",
    "in_progress",
    "awaiting_input",
    "paused",
    "completed",
    "failed",
    "cancelled",
]
Priority = Literal["low", "medium", "high", "critical"]
ApprovalType = Literal["plan", "action", "resource"]

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


class PendingApproval(BaseModel):
    type: ApprovalType
    description: str
    details: Dict[str, Any] = Field(default_factory=dict)
    requested_at: datetime = Field(default_factory=utcnow)


class PendingQuestion(BaseModel):
    question: str
    options: List[str] = Field(default_factory=list)
    asked_at: datetime = Field(default_factory=utcnow)


class CommitInfo(BaseModel):
    sha: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class Ticket(BaseModel):
    """A unit of work tracked through the lifecycle."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: str
    status: TicketStatus = "draft"
    priority: Priority = "medium"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    plan: Optional[Plan] = None
    current_turn: int = 0
    max_turns: int = DEFAULT_MAX_TURNS
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    pending_approval: Optional[PendingApproval] = None
    pending_question: Optional[PendingQuestion] = None
    working_branch: Optional[str] = None
    commits: List[CommitInfo] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CreateTicketInput(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    priority: Optional[Priority] = None
    max_turns: Optional[int] = Field(default=None, gt=0)


class UpdateTicketInput(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[Priority] = None
    max_turns: Optional[int] = Field(default=None, gt=0)
