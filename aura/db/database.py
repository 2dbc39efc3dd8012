from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..audit import AuditEntry, AuditEventType, AuditLog
from ..tickets.models import Ticket, TicketStatus
from ..tickets.store import TicketStore
from .models import AuditLogRow, TicketRow


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuraDB:
    """Async database helper for ticket and audit persistence."""

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine) as session:
            yield session


def ticket_to_row(ticket: Ticket) -> TicketRow:
    data = ticket.model_dump(mode="json")
    return TicketRow(
        id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        status=ticket.status,
        priority=ticket.priority,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
        resolved_at=ticket.resolved_at,
        plan=data["plan"],
        current_turn=ticket.current_turn,
        max_turns=ticket.max_turns,
        token_usage=data["token_usage"],
        pending_approval=data["pending_approval"],
        pending_question=data["pending_question"],
        working_branch=ticket.working_branch,
        commits=data["commits"],
    )


def row_to_ticket(row: TicketRow) -> Ticket:
    return Ticket(
        id=row.id,
        title=row.title,
        description=row.description,
        status=row.status,
        priority=row.priority,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        resolved_at=_aware(row.resolved_at),
        plan=row.plan,
        current_turn=row.current_turn,
        max_turns=row.max_turns,
        token_usage=row.token_usage or {},
        pending_approval=row.pending_approval,
        pending_question=row.pending_question,
        working_branch=row.working_branch,
        commits=row.commits or [],
    )


class SQLTicketStore(TicketStore):
    """Persist tickets in a SQLModel table."""

    def __init__(self, db: AuraDB) -> None:
        self.db = db

    async def create(self, ticket: Ticket) -> None:
        async with self.db.session() as session:
            session.add(ticket_to_row(ticket))
            await session.commit()

    async def get(self, ticket_id: str) -> Ticket | None:
        async with self.db.session() as session:
            row = await session.get(TicketRow, ticket_id)
            return row_to_ticket(row) if row else None

    async def list(self, status: Optional[TicketStatus] = None) -> List[Ticket]:
        stmt = select(TicketRow).order_by(TicketRow.created_at.desc())
        if status is not None:
            stmt = stmt.where(TicketRow.status == status)
        async with self.db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_ticket(r) for r in rows]

    async def update(self, ticket: Ticket) -> None:
        async with self.db.session() as session:
            await session.merge(ticket_to_row(ticket))
            await session.commit()

    async def delete(self, ticket_id: str) -> None:
        async with self.db.session() as session:
            row = await session.get(TicketRow, ticket_id)
            if row is None:
                return
            await session.delete(row)
            await session.commit()


class SQLAuditLog(AuditLog):
    """Persist audit entries in a SQLModel table."""

    def __init__(self, db: AuraDB) -> None:
        self.db = db

    async def append(self, entry: AuditEntry) -> AuditEntry:
        data = entry.model_dump(mode="json")
        row = AuditLogRow(
            id=entry.id,
            ticket_id=entry.ticket_id,
            timestamp=entry.timestamp,
            type=entry.type,
            actor=entry.actor,
            action=entry.action,
            reasoning=entry.reasoning,
            tool_call=data["tool_call"],
            state_change=data["state_change"],
            token_usage=data["token_usage"],
        )
        async with self.db.session() as session:
            session.add(row)
            await session.commit()
        return entry

    async def query(
        self,
        ticket_id: Optional[str] = None,
        type: Optional[AuditEventType] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        stmt = select(AuditLogRow).order_by(AuditLogRow.seq.desc())
        if ticket_id is not None:
            stmt = stmt.where(AuditLogRow.ticket_id == ticket_id)
        if type is not None:
            stmt = stmt.where(AuditLogRow.type == type)
        if limit:
            stmt = stmt.limit(limit)
        async with self.db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            AuditEntry(
                id=r.id,
                ticket_id=r.ticket_id,
                timestamp=_aware(r.timestamp),
                type=r.type,
                actor=r.actor,
                action=r.action,
                reasoning=r.reasoning,
                tool_call=r.tool_call,
                state_change=r.state_change,
                token_usage=r.token_usage,
            )
            for r in rows
        ]
