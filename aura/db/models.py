from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class TicketRow(SQLModel, table=True):
    """Stored ticket. Nested models are kept as JSON columns."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True)
    title: str
    description: str
    status: str = Field(default="draft", index=True)
    priority: str = Field(default="medium")
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    plan: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    current_turn: int = 0
    max_turns: int
    token_usage: dict = Field(sa_column=Column(JSON))
    pending_approval: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    pending_question: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    working_branch: Optional[str] = None
    commits: list = Field(sa_column=Column(JSON))


class AuditLogRow(SQLModel, table=True):
    """Stored audit entry."""

    __tablename__ = "audit_logs"

    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(unique=True)
    ticket_id: str = Field(index=True)
    timestamp: datetime
    type: str = Field(index=True)
    actor: str
    action: str
    reasoning: Optional[str] = None
    tool_call: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    state_change: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    token_usage: Optional[dict] = Field(default=None, sa_column=Column(JSON))
