"""Tickets: the user-facing unit of work and its status lifecycle."""

from .models import (
    TERMINAL_STATUSES,
    CommitInfo,
    CreateTicketInput,
    PendingApproval,
    PendingQuestion,
    Priority,
    Ticket,
    TicketStatus,
    UpdateTicketInput,
)
from .service import TicketService
from .store import InMemoryTicketStore, TicketStore
from .transitions import VALID_TRANSITIONS, can_transition, transition_path

__all__ = [
    "TERMINAL_STATUSES",
    "CommitInfo",
    "CreateTicketInput",
    "PendingApproval",
    "PendingQuestion",
    "Priority",
    "Ticket",
    "TicketStatus",
    "UpdateTicketInput",
    "TicketService",
    "TicketStore",
    "InMemoryTicketStore",
    "VALID_TRANSITIONS",
    "can_transition",
    "transition_path",
]
