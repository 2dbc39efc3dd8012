"""In-memory implementation of the checkpoint store."""

from __future__ import annotations

import copy
from typing import Dict, Optional, Sequence

from ..contracts import utcnow
from ..errors import CheckpointNotFoundError
from .models import CheckpointTuple, PendingWrite
from .store import (
    CheckpointStore,
    Write,
    new_checkpoint_id,
    require_work_item_id,
    validate_put,
    validate_write_target,
)


class InMemoryCheckpointStore(CheckpointStore):
    """Store checkpoints in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        # work item -> checkpoint id -> (sequence, checkpoint)
        self._checkpoints: Dict[str, Dict[str, tuple[int, CheckpointTuple]]] = {}
        self._seq = 0

    # ------------------------------------------------------------------
    def _ordered(self, work_item_id: str) -> list[CheckpointTuple]:
        rows = self._checkpoints.get(work_item_id, {}).values()
        return [cp for _, cp in sorted(rows, key=lambda row: row[0], reverse=True)]

    async def get_latest(
        self, work_item_id: str, checkpoint_id: Optional[str] = None
    ) -> CheckpointTuple | None:
        require_work_item_id(work_item_id)
        if checkpoint_id is not None:
            row = self._checkpoints.get(work_item_id, {}).get(checkpoint_id)
            return row[1].model_copy(deep=True) if row else None
        ordered = self._ordered(work_item_id)
        return ordered[0].model_copy(deep=True) if ordered else None

    async def list(
        self,
        work_item_id: str,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CheckpointTuple]:
        require_work_item_id(work_item_id)
        rows = self._checkpoints.get(work_item_id, {})
        ordered = sorted(rows.values(), key=lambda row: row[0], reverse=True)
        if before is not None:
            cutoff = rows.get(before)
            if cutoff is not None:
                ordered = [row for row in ordered if row[0] < cutoff[0]]
        if limit:
            ordered = ordered[:limit]
        return [cp.model_copy(deep=True) for _, cp in ordered]

    async def put(
        self,
        work_item_id: str,
        snapshot: dict,
        metadata: dict | None = None,
        *,
        parent_checkpoint_id: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
    ) -> str:
        validate_put(work_item_id, snapshot)
        checkpoint_id = checkpoint_id or new_checkpoint_id()
        rows = self._checkpoints.setdefault(work_item_id, {})
        existing = rows.get(checkpoint_id)
        now = utcnow()
        if existing is not None:
            seq, current = existing
            rows[checkpoint_id] = (
                seq,
                current.model_copy(
                    update={
                        "snapshot": copy.deepcopy(snapshot),
                        "metadata": copy.deepcopy(metadata or {}),
                        "updated_at": now,
                    },
                    deep=True,
                ),
            )
            return checkpoint_id

        self._seq += 1
        rows[checkpoint_id] = (
            self._seq,
            CheckpointTuple(
                work_item_id=work_item_id,
                checkpoint_id=checkpoint_id,
                parent_checkpoint_id=parent_checkpoint_id,
                snapshot=copy.deepcopy(snapshot),
                metadata=copy.deepcopy(metadata or {}),
                created_at=now,
            ).model_copy(deep=True),
        )
        return checkpoint_id

    async def append_pending_write(
        self,
        work_item_id: str,
        checkpoint_id: str,
        task_id: str,
        writes: Sequence[Write],
    ) -> None:
        validate_write_target(work_item_id, checkpoint_id, task_id)
        row = self._checkpoints.get(work_item_id, {}).get(checkpoint_id)
        if row is None:
            raise CheckpointNotFoundError(work_item_id, checkpoint_id)
        seq, current = row
        new_writes = [
            PendingWrite(task_id=task_id, channel=channel, value=value)
            for channel, value in writes
        ]
        self._checkpoints[work_item_id][checkpoint_id] = (
            seq,
            current.model_copy(
                update={
                    "pending_writes": current.pending_writes + new_writes,
                    "updated_at": utcnow(),
                },
                deep=True,
            ),
        )

    async def delete_all(self, work_item_id: str) -> None:
        require_work_item_id(work_item_id)
        self._checkpoints.pop(work_item_id, None)
