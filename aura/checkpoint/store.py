"""Checkpoint store abstraction for workflow state persistence."""

from __future__ import annotations

import uuid
from typing import Any, Optional, Protocol, Sequence, Tuple

from ..errors import InputValidationError
from .models import CheckpointTuple

Write = Tuple[str, Any]


class CheckpointStore(Protocol):
    """Protocol for checkpoint persistence backends.

    Checkpoints are keyed by ``(work_item_id, checkpoint_id)``. The most
    recently created checkpoint of a work item is its current state.
    """

    async def get_latest(
        self, work_item_id: str, checkpoint_id: Optional[str] = None
    ) -> CheckpointTuple | None:
        """Return the newest checkpoint, or the one named by ``checkpoint_id``."""

    async def list(
        self,
        work_item_id: str,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CheckpointTuple]:
        """Return checkpoints newest first, optionally older than ``before``."""

    async def put(
        self,
        work_item_id: str,
        snapshot: dict,
        metadata: dict | None = None,
        *,
        parent_checkpoint_id: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
    ) -> str:
        """Upsert a checkpoint and return its id."""

    async def append_pending_write(
        self,
        work_item_id: str,
        checkpoint_id: str,
        task_id: str,
        writes: Sequence[Write],
    ) -> None:
        """Attach uncommitted phase output to an existing checkpoint."""

    async def delete_all(self, work_item_id: str) -> None:
        """Remove every checkpoint of the work item."""


def new_checkpoint_id() -> str:
    return uuid.uuid4().hex


def require_work_item_id(work_item_id: str) -> None:
    if not work_item_id:
        raise InputValidationError("work_item_id is required")


def validate_put(work_item_id: str, snapshot: Any) -> None:
    require_work_item_id(work_item_id)
    if snapshot is None:
        raise InputValidationError("snapshot is required")
    if not isinstance(snapshot, dict):
        raise InputValidationError("snapshot must be a JSON object")


def validate_write_target(work_item_id: str, checkpoint_id: str, task_id: str) -> None:
    require_work_item_id(work_item_id)
    if not checkpoint_id:
        raise InputValidationError("checkpoint_id is required")
    if not task_id:
        raise InputValidationError("task_id is required")
