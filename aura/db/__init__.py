"""SQL persistence for tickets and audit entries."""

from __future__ import annotations

from typing import Optional

from ..config import AuraConfig, load_config
from ..tickets.service import TicketService
from .database import AuraDB, SQLAuditLog, SQLTicketStore, row_to_ticket, ticket_to_row
from .models import AuditLogRow, TicketRow


async def open_ticket_service(
    database_url: Optional[str] = None, config: Optional[AuraConfig] = None
) -> TicketService:
    """Build a :class:`TicketService` for the configured tickets database.

    Without ``tickets_database_url`` the service keeps tickets and audit
    entries in memory.
    """

    config = config or load_config()
    database_url = database_url or config.tickets_database_url
    if not database_url:
        return TicketService(default_max_turns=config.tickets.default_max_turns)

    db = AuraDB(database_url)
    await db.init_db()
    return TicketService(
        store=SQLTicketStore(db),
        audit=SQLAuditLog(db),
        default_max_turns=config.tickets.default_max_turns,
    )


__all__ = [
    "AuraDB",
    "AuditLogRow",
    "TicketRow",
    "SQLTicketStore",
    "SQLAuditLog",
    "ticket_to_row",
    "row_to_ticket",
    "open_ticket_service",
]
