"""Audit trail of ticket mutations and agent activity."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

from .contracts import TokenUsage, utcnow

logger = logging.getLogger(__name__)

AuditEventType = Literal[
    "ticket_created",
    "ticket_updated",
    "status_changed",
    "plan_generated",
    "plan_approved",
    "plan_rejected",
    "turn_completed",
    "tool_called",
    "approval_requested",
    "approval_granted",
    "approval_denied",
    "question_asked",
    "question_answered",
    "commit_created",
    "error_occurred",
    "agent_started",
    "agent_completed",
]

Actor = Literal["system", "agent", "user"]


class ToolCallInfo(BaseModel):
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None


class StateChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class AuditEntry(BaseModel):
    """One immutable audit record."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    ticket_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    type: AuditEventType
    actor: Actor = "system"
    action: str
    reasoning: Optional[str] = None
    tool_call: Optional[ToolCallInfo] = None
    state_change: Optional[StateChange] = None
    token_usage: Optional[TokenUsage] = None


class AuditLog(Protocol):
    """Append-only sink for audit entries."""

    async def append(self, entry: AuditEntry) -> AuditEntry:
        """Persist ``entry``."""

    async def query(
        self,
        ticket_id: Optional[str] = None,
        type: Optional[AuditEventType] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        """Return matching entries, newest first."""


class InMemoryAuditLog(AuditLog):
    """Keep audit entries in a list. Used in tests and without a database."""

    def __init__(self) -> None:
        self._entries: List[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> AuditEntry:
        self._entries.append(entry)
        logger.debug(f"Audit [{entry.ticket_id}] {entry.type}: {entry.action}")
        return entry

    async def query(
        self,
        ticket_id: Optional[str] = None,
        type: Optional[AuditEventType] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        entries = [
            e
            for e in reversed(self._entries)
            if (ticket_id is None or e.ticket_id == ticket_id)
            and (type is None or e.type == type)
        ]
        return entries[:limit] if limit else entries
