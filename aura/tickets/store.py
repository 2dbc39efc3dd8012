"""Ticket persistence abstraction."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol

from .models import Ticket, TicketStatus


class TicketStore(Protocol):
    """Protocol for ticket persistence backends."""

    async def create(self, ticket: Ticket) -> None:
        """Persist a new ticket."""

    async def get(self, ticket_id: str) -> Ticket | None:
        """Return the ticket or ``None``."""

    async def list(self, status: Optional[TicketStatus] = None) -> List[Ticket]:
        """Return tickets newest first, optionally filtered by status."""

    async def update(self, ticket: Ticket) -> None:
        """Replace the stored ticket."""

    async def delete(self, ticket_id: str) -> None:
        """Remove the ticket."""


class InMemoryTicketStore(TicketStore):
    """Store tickets in local memory."""

    def __init__(self) -> None:
        self._tickets: Dict[str, Ticket] = {}

    async def create(self, ticket: Ticket) -> None:
        self._tickets[ticket.id] = ticket.model_copy(deep=True)

    async def get(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return ticket.model_copy(deep=True) if ticket else None

    async def list(self, status: Optional[TicketStatus] = None) -> List[Ticket]:
        # newest insertion first among equal timestamps
        tickets = [
            t
            for t in reversed(list(self._tickets.values()))
            if status is None or t.status == status
        ]
        tickets.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in tickets]

    async def update(self, ticket: Ticket) -> None:
        self._tickets[ticket.id] = ticket.model_copy(deep=True)

    async def delete(self, ticket_id: str) -> None:
        self._tickets.pop(ticket_id, None)
