"""Ticket status transition table."""

from __future__ import annotations

from collections import deque
from typing import Dict, FrozenSet, List, Optional

from .models import TicketStatus

VALID_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"pending_approval", "cancelled"}),
    "pending_approval": frozenset({"approved", "draft", "cancelled"}),
    "approved": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset(
        {"awaiting_input", "paused", "completed", "failed", "cancelled"}
    ),
    "awaiting_input": frozenset({"in_progress", "paused", "cancelled"}),
    "paused": frozenset({"in_progress", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset({"draft"}),
    "cancelled": frozenset({"draft"}),
}


def can_transition(from_status: TicketStatus, to_status: TicketStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def transition_path(
    from_status: TicketStatus, to_status: TicketStatus
) -> Optional[List[TicketStatus]]:
    """Shortest sequence of legal hops from ``from_status`` to ``to_status``.

    The returned list excludes ``from_status``; it is empty when both are
    equal and ``None`` when the target is unreachable.
    """

    if from_status == to_status:
        return []
    previous: Dict[str, str] = {from_status: from_status}
    queue = deque([from_status])
    while queue:
        current = queue.popleft()
        # sorted for a deterministic path
        for nxt in sorted(VALID_TRANSITIONS.get(current, ())):
            if nxt in previous:
                continue
            previous[nxt] = current
            if nxt == to_status:
                path = [nxt]
                while previous[path[-1]] != from_status:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            queue.append(nxt)
    return None
