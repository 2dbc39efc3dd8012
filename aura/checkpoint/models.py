"""Data models for persisted workflow checkpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class PendingWrite(BaseModel):
    """Output of a phase recorded before its side effects were applied."""

    task_id: str
    channel: str
    value: Any = None


class CheckpointTuple(BaseModel):
    """A stored checkpoint together with its chain and pending writes."""

    work_item_id: str
    checkpoint_id: str
    parent_checkpoint_id: Optional[str] = None
    snapshot: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    pending_writes: list[PendingWrite] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    def writes_for(self, task_id: str) -> list[PendingWrite]:
        """Return pending writes recorded by ``task_id`` in write order."""
        return [w for w in self.pending_writes if w.task_id == task_id]
