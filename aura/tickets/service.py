"""Ticket service: every ticket mutation goes through here and is audited."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..audit import AuditEntry, AuditEventType, AuditLog, InMemoryAuditLog, StateChange
from ..constants import DEFAULT_MAX_TURNS
from ..contracts import Plan, PlanStep, TokenUsage, utcnow
from ..errors import (
    InputValidationError,
    InvalidTransitionError,
    NoPendingApprovalError,
    NoPendingQuestionError,
    NoPlanError,
    TicketNotFoundError,
)
from .models import (
    TERMINAL_STATUSES,
    CommitInfo,
    CreateTicketInput,
    PendingApproval,
    PendingQuestion,
    Ticket,
    TicketStatus,
    UpdateTicketInput,
)
from .store import InMemoryTicketStore, TicketStore
from .transitions import can_transition

logger = logging.getLogger(__name__)


def _validated(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InputValidationError(str(e)) from e


class TicketService:
    """CRUD and state changes for tickets."""

    def __init__(
        self,
        store: Optional[TicketStore] = None,
        audit: Optional[AuditLog] = None,
        default_max_turns: int = DEFAULT_MAX_TURNS,
    ) -> None:
        self.store = store or InMemoryTicketStore()
        self.audit = audit or InMemoryAuditLog()
        self._default_max_turns = default_max_turns

    async def _audit(
        self,
        ticket_id: str,
        type: AuditEventType,
        action: str,
        actor: str = "system",
        **extra: Any,
    ) -> None:
        await self.audit.append(
            AuditEntry(ticket_id=ticket_id, type=type, actor=actor, action=action, **extra)
        )

    async def _save(self, ticket: Ticket, **fields: Any) -> Ticket:
        updated = ticket.model_copy(update={**fields, "updated_at": utcnow()})
        await self.store.update(updated)
        return updated

    # ------------------------------------------------------------------
    # CRUD
    async def create(self, data: Union[CreateTicketInput, Dict[str, Any]]) -> Ticket:
        data = _validated(CreateTicketInput, data)
        ticket = Ticket(
            title=data.title,
            description=data.description,
            priority=data.priority or "medium",
            max_turns=data.max_turns or self._default_max_turns,
        )
        await self.store.create(ticket)
        await self._audit(ticket.id, "ticket_created", f"Created ticket: {ticket.title}")
        logger.info(f"Created ticket {ticket.id}")
        return ticket

    async def get(self, ticket_id: str) -> Ticket:
        ticket = await self.store.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def list(self, status: Optional[TicketStatus] = None) -> List[Ticket]:
        return await self.store.list(status)

    async def update(
        self, ticket_id: str, data: Union[UpdateTicketInput, Dict[str, Any]]
    ) -> Ticket:
        data = _validated(UpdateTicketInput, data)
        ticket = await self.get(ticket_id)
        ticket = await self._save(ticket, **data.model_dump(exclude_none=True))
        await self._audit(ticket_id, "ticket_updated", f"Updated ticket: {ticket.title}")
        return ticket

    async def delete(self, ticket_id: str) -> None:
        ticket = await self.get(ticket_id)
        await self.store.delete(ticket_id)
        await self._audit(ticket_id, "ticket_updated", f"Deleted ticket: {ticket.title}")

    # ------------------------------------------------------------------
    # Status
    async def transition_status(
        self, ticket_id: str, target: TicketStatus, actor: str = "system"
    ) -> Ticket:
        ticket = await self.get(ticket_id)
        if not can_transition(ticket.status, target):
            raise InvalidTransitionError(ticket.status, target)

        resolved_at = utcnow() if target in TERMINAL_STATUSES else None
        previous = ticket.status
        ticket = await self._save(ticket, status=target, resolved_at=resolved_at)
        await self._audit(
            ticket_id,
            "status_changed",
            f"Status changed from {previous} to {target}",
            actor=actor,
            state_change=StateChange(field="status", old_value=previous, new_value=target),
        )
        logger.info(f"Ticket {ticket_id} status {previous} -> {target}")
        return ticket

    # ------------------------------------------------------------------
    # Plan
    async def set_plan(self, ticket_id: str, plan: Plan) -> Ticket:
        ticket = await self.get(ticket_id)
        ticket = await self._save(ticket, plan=plan)
        await self._audit(
            ticket_id, "plan_generated", f"Plan generated with {len(plan.steps)} steps"
        )
        return ticket

    async def approve_plan(self, ticket_id: str, approved_by: str) -> Ticket:
        """Stamp the plan as approved and move the ticket to ``approved``."""

        ticket = await self.get(ticket_id)
        if ticket.plan is None:
            raise NoPlanError(ticket_id)
        if ticket.status != "approved" and not can_transition(ticket.status, "approved"):
            raise InvalidTransitionError(ticket.status, "approved")

        plan = ticket.plan.model_copy(
            update={"approved_at": utcnow(), "approved_by": approved_by}
        )
        ticket = await self._save(ticket, plan=plan)
        await self._audit(
            ticket_id, "plan_approved", f"Plan approved by {approved_by}", actor="user"
        )
        if ticket.status != "approved":
            ticket = await self.transition_status(ticket_id, "approved", actor="user")
        return ticket

    async def reject_plan(self, ticket_id: str, rejected_by: Optional[str] = None) -> Ticket:
        ticket = await self.get(ticket_id)
        if ticket.plan is None:
            raise NoPlanError(ticket_id)
        who = f" by {rejected_by}" if rejected_by else ""
        await self._audit(ticket_id, "plan_rejected", f"Plan rejected{who}", actor="user")
        return ticket

    async def update_plan_step(
        self, ticket_id: str, index: int, fields: Dict[str, Any]
    ) -> Ticket:
        """Merge ``fields`` into step ``index`` of the ticket's plan.

        The merged step is validated like any other plan step, and at most
        one step of the plan may be ``in_progress``.
        """

        ticket = await self.get(ticket_id)
        if ticket.plan is None:
            raise NoPlanError(ticket_id)
        current = next((step for step in ticket.plan.steps if step.index == index), None)
        if current is None:
            raise InputValidationError(f"Plan has no step with index {index}")
        unknown = set(fields) - set(PlanStep.model_fields)
        if unknown:
            raise InputValidationError(f"Unknown plan step fields: {sorted(unknown)}")
        if {"id", "index"} & set(fields):
            raise InputValidationError("Plan step id and index cannot be changed")

        step = _validated(PlanStep, {**current.model_dump(), **fields})
        if step.status == "in_progress":
            busy = [
                s.index
                for s in ticket.plan.steps
                if s.status == "in_progress" and s.index != index
            ]
            if busy:
                raise InputValidationError(f"Step {busy[0]} is already in progress")

        steps = [step if s.index == index else s for s in ticket.plan.steps]
        return await self._save(ticket, plan=ticket.plan.model_copy(update={"steps": steps}))

    async def get_current_step(self, ticket_id: str) -> Optional[PlanStep]:
        ticket = await self.get(ticket_id)
        if ticket.plan is None:
            return None
        return ticket.plan.current_step()

    # ------------------------------------------------------------------
    # Human in the loop
    async def request_approval(self, ticket_id: str, approval: PendingApproval) -> Ticket:
        ticket = await self.get(ticket_id)
        ticket = await self._save(ticket, pending_approval=approval)
        await self._audit(
            ticket_id,
            "approval_requested",
            f"Approval requested: {approval.description}",
            actor="agent",
        )
        return ticket

    async def grant_approval(self, ticket_id: str) -> Ticket:
        ticket = await self.get(ticket_id)
        if ticket.pending_approval is None:
            raise NoPendingApprovalError(ticket_id)
        ticket = await self._save(ticket, pending_approval=None)
        await self._audit(ticket_id, "approval_granted", "Approval granted", actor="user")
        return ticket

    async def deny_approval(self, ticket_id: str) -> Ticket:
        ticket = await self.get(ticket_id)
        if ticket.pending_approval is None:
            raise NoPendingApprovalError(ticket_id)
        ticket = await self._save(ticket, pending_approval=None)
        await self._audit(ticket_id, "approval_denied", "Approval denied", actor="user")
        return ticket

    async def ask_question(self, ticket_id: str, question: PendingQuestion) -> Ticket:
        ticket = await self.get(ticket_id)
        ticket = await self._save(ticket, pending_question=question)
        await self._audit(
            ticket_id, "question_asked", f"Question asked: {question.question}", actor="agent"
        )
        return ticket

    async def answer_question(self, ticket_id: str, answer: str) -> Ticket:
        ticket = await self.get(ticket_id)
        if ticket.pending_question is None:
            raise NoPendingQuestionError(ticket_id)
        ticket = await self._save(ticket, pending_question=None)
        await self._audit(
            ticket_id, "question_answered", f"Question answered: {answer}", actor="user"
        )
        return ticket

    # ------------------------------------------------------------------
    # Bookkeeping
    async def increment_turn(
        self, ticket_id: str, token_usage: Optional[TokenUsage] = None
    ) -> Ticket:
        ticket = await self.get(ticket_id)
        usage = ticket.token_usage + token_usage if token_usage else ticket.token_usage
        turn = ticket.current_turn + 1
        ticket = await self._save(ticket, current_turn=turn, token_usage=usage)
        await self._audit(
            ticket_id, "turn_completed", f"Turn {turn} completed", token_usage=token_usage
        )
        return ticket

    async def add_commit(self, ticket_id: str, commit: CommitInfo) -> Ticket:
        ticket = await self.get(ticket_id)
        ticket = await self._save(ticket, commits=[*ticket.commits, commit])
        await self._audit(
            ticket_id, "commit_created", f"Commit created: {commit.sha[:7]}", actor="agent"
        )
        return ticket

    async def set_working_branch(self, ticket_id: str, branch: str) -> Ticket:
        ticket = await self.get(ticket_id)
        return await self._save(ticket, working_branch=branch)
