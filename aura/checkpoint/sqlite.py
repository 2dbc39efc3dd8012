"""SQLite implementation of the checkpoint store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

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

_COLUMNS = (
    "seq, work_item_id, checkpoint_id, parent_checkpoint_id, snapshot, metadata, "
    "pending_writes, created_at, updated_at"
)


class SQLiteCheckpointStore(CheckpointStore):
    """Persist checkpoints using SQLite.

    Each write runs in its own transaction so a checkpoint is either fully
    stored or absent after a crash. Ordering uses the ``seq`` column rather
    than timestamps.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoints (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    work_item_id TEXT NOT NULL,
                    checkpoint_id TEXT NOT NULL,
                    parent_checkpoint_id TEXT,
                    snapshot TEXT NOT NULL,
                    metadata TEXT,
                    pending_writes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    UNIQUE (work_item_id, checkpoint_id)
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_checkpoints_work_item "
                "ON checkpoints (work_item_id, seq)"
            )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock, self._conn:
            cur = self._conn.execute(query, params)
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def _append_writes(
        self, work_item_id: str, checkpoint_id: str, new_writes: list[dict]
    ) -> bool:
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT pending_writes FROM checkpoints WHERE work_item_id = ? AND checkpoint_id = ?",
                (work_item_id, checkpoint_id),
            ).fetchone()
            if row is None:
                return False
            existing = json.loads(row["pending_writes"]) if row["pending_writes"] else []
            self._conn.execute(
                "UPDATE checkpoints SET pending_writes = ?, updated_at = ? "
                "WHERE work_item_id = ? AND checkpoint_id = ?",
                (
                    json.dumps(existing + new_writes),
                    utcnow().isoformat(),
                    work_item_id,
                    checkpoint_id,
                ),
            )
            return True

    @staticmethod
    def _row_to_tuple(row: sqlite3.Row) -> CheckpointTuple:
        return CheckpointTuple(
            work_item_id=row["work_item_id"],
            checkpoint_id=row["checkpoint_id"],
            parent_checkpoint_id=row["parent_checkpoint_id"],
            snapshot=json.loads(row["snapshot"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            pending_writes=[
                PendingWrite(**w) for w in json.loads(row["pending_writes"])
            ]
            if row["pending_writes"]
            else [],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    # ------------------------------------------------------------------
    # Store API
    async def get_latest(
        self, work_item_id: str, checkpoint_id: Optional[str] = None
    ) -> CheckpointTuple | None:
        require_work_item_id(work_item_id)
        if checkpoint_id is not None:
            row = await asyncio.to_thread(
                self._fetchone,
                f"SELECT {_COLUMNS} FROM checkpoints WHERE work_item_id = ? AND checkpoint_id = ?",
                work_item_id,
                checkpoint_id,
            )
        else:
            row = await asyncio.to_thread(
                self._fetchone,
                f"SELECT {_COLUMNS} FROM checkpoints WHERE work_item_id = ? ORDER BY seq DESC LIMIT 1",
                work_item_id,
            )
        return self._row_to_tuple(row) if row else None

    async def list(
        self,
        work_item_id: str,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CheckpointTuple]:
        require_work_item_id(work_item_id)
        query = f"SELECT {_COLUMNS} FROM checkpoints WHERE work_item_id = ?"
        params: list[Any] = [work_item_id]
        if before is not None:
            query += (
                " AND seq < COALESCE((SELECT seq FROM checkpoints "
                "WHERE work_item_id = ? AND checkpoint_id = ?), -1)"
            )
            params.extend([work_item_id, before])
        query += " ORDER BY seq DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_tuple(r) for r in rows]

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
        now = utcnow().isoformat()
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO checkpoints (
                work_item_id, checkpoint_id, parent_checkpoint_id, snapshot,
                metadata, pending_writes, created_at
            ) VALUES (?, ?, ?, ?, ?, NULL, ?)
            ON CONFLICT (work_item_id, checkpoint_id) DO UPDATE SET
                snapshot = excluded.snapshot,
                metadata = excluded.metadata,
                updated_at = excluded.created_at
            """,
            work_item_id,
            checkpoint_id,
            parent_checkpoint_id,
            json.dumps(snapshot),
            json.dumps(metadata or {}),
            now,
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
        new_writes = [
            {"task_id": task_id, "channel": channel, "value": value}
            for channel, value in writes
        ]
        found = await asyncio.to_thread(
            self._append_writes, work_item_id, checkpoint_id, new_writes
        )
        if not found:
            raise CheckpointNotFoundError(work_item_id, checkpoint_id)

    async def delete_all(self, work_item_id: str) -> None:
        require_work_item_id(work_item_id)
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM checkpoints WHERE work_item_id = ?",
            work_item_id,
        )
