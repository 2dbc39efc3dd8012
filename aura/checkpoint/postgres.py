"""PostgreSQL implementation of the checkpoint store."""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import asyncpg

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


def _load(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresCheckpointStore(CheckpointStore):
    """Persist checkpoints using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                seq BIGSERIAL PRIMARY KEY,
                work_item_id TEXT NOT NULL,
                checkpoint_id TEXT NOT NULL,
                parent_checkpoint_id TEXT,
                snapshot JSONB NOT NULL,
                metadata JSONB,
                pending_writes JSONB,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ,
                UNIQUE (work_item_id, checkpoint_id)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_checkpoints_work_item "
            "ON checkpoints (work_item_id, seq)"
        )

    @staticmethod
    def _row_to_tuple(row: asyncpg.Record) -> CheckpointTuple:
        writes = _load(row["pending_writes"]) or []
        return CheckpointTuple(
            work_item_id=row["work_item_id"],
            checkpoint_id=row["checkpoint_id"],
            parent_checkpoint_id=row["parent_checkpoint_id"],
            snapshot=_load(row["snapshot"]),
            metadata=_load(row["metadata"]) or {},
            pending_writes=[PendingWrite(**w) for w in writes],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def get_latest(
        self, work_item_id: str, checkpoint_id: Optional[str] = None
    ) -> CheckpointTuple | None:
        require_work_item_id(work_item_id)
        conn = await self._connect()
        try:
            if checkpoint_id is not None:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM checkpoints WHERE work_item_id = $1 AND checkpoint_id = $2",
                    work_item_id,
                    checkpoint_id,
                )
            else:
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM checkpoints WHERE work_item_id = $1 ORDER BY seq DESC LIMIT 1",
                    work_item_id,
                )
        finally:
            await conn.close()
        return self._row_to_tuple(row) if row else None

    async def list(
        self,
        work_item_id: str,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CheckpointTuple]:
        require_work_item_id(work_item_id)
        query = f"SELECT {_COLUMNS} FROM checkpoints WHERE work_item_id = $1"
        params: list[Any] = [work_item_id]
        if before is not None:
            params.append(before)
            query += (
                " AND seq < COALESCE((SELECT seq FROM checkpoints "
                f"WHERE work_item_id = $1 AND checkpoint_id = ${len(params)}), -1)"
            )
        query += " ORDER BY seq DESC"
        if limit:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
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
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO checkpoints (
                    work_item_id, checkpoint_id, parent_checkpoint_id, snapshot,
                    metadata, pending_writes, created_at
                ) VALUES ($1, $2, $3, $4, $5, NULL, $6)
                ON CONFLICT (work_item_id, checkpoint_id) DO UPDATE SET
                    snapshot = EXCLUDED.snapshot,
                    metadata = EXCLUDED.metadata,
                    updated_at = EXCLUDED.created_at
                """,
                work_item_id,
                checkpoint_id,
                parent_checkpoint_id,
                json.dumps(snapshot),
                json.dumps(metadata or {}),
                utcnow(),
            )
        finally:
            await conn.close()
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
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT pending_writes FROM checkpoints "
                    "WHERE work_item_id = $1 AND checkpoint_id = $2 FOR UPDATE",
                    work_item_id,
                    checkpoint_id,
                )
                if row is None:
                    raise CheckpointNotFoundError(work_item_id, checkpoint_id)
                existing = _load(row["pending_writes"]) or []
                await conn.execute(
                    "UPDATE checkpoints SET pending_writes = $1, updated_at = $2 "
                    "WHERE work_item_id = $3 AND checkpoint_id = $4",
                    json.dumps(existing + new_writes),
                    utcnow(),
                    work_item_id,
                    checkpoint_id,
                )
        finally:
            await conn.close()

    async def delete_all(self, work_item_id: str) -> None:
        require_work_item_id(work_item_id)
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM checkpoints WHERE work_item_id = $1", work_item_id
            )
        finally:
            await conn.close()
