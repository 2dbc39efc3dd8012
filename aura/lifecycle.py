"""Ticket lifecycle controller.

Drives the workflow engine for a ticket and maps every engine outcome onto a
legal ticket status, charging turns and tokens to the ticket budget.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from .audit import AuditEntry, ToolCallInfo
from .checkpoint import CheckpointStore, get_checkpoint_store
from .config import AuraConfig, load_config
from .constants import AUTO_APPROVER, DEFAULT_APPROVER
from .contracts import HumanInput, Plan, PlanStep, RunResult, TokenUsage, WorkflowState
from .engine import EngineRun, WorkflowEngine
from .errors import (
    AgentBusyError,
    AgentNotRunningError,
    InputValidationError,
    InvalidTransitionError,
    MaxTurnsExceededError,
    NoPendingApprovalError,
    NoPendingQuestionError,
    ReasoningError,
)
from .reasoning.base import ReasoningEngine
from .tickets import Ticket, TicketService, TicketStatus, transition_path
from .tools import Tool, create_human_tools

logger = logging.getLogger(__name__)

RESUMABLE_STATUSES = ("approved", "awaiting_input", "paused")


class LifecycleController:
    """Run, resume, pause and cancel the agent working on a ticket.

    Only one ``run``/``resume``/``cancel`` call per ticket may be in flight;
    a concurrent call raises :class:`AgentBusyError`. The controller is also
    the engine's observer and mirrors plan and step changes onto the ticket.
    """

    def __init__(
        self,
        tickets: TicketService,
        reasoning: ReasoningEngine,
        checkpoints: Optional[CheckpointStore] = None,
        *,
        config: Optional[AuraConfig] = None,
        tools: Sequence[Tool] = (),
    ) -> None:
        self.config = config or load_config()
        self.tickets = tickets
        self._tools = list(tools)
        self.engine = WorkflowEngine(
            reasoning,
            checkpoints or get_checkpoint_store(config=self.config),
            observer=self,
            max_steps_per_invocation=self.config.agent.max_steps_per_invocation,
        )
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def plan_approval_required(self) -> bool:
        return self.config.agent.plan_approval_required

    @asynccontextmanager
    async def _exclusive(self, ticket_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(ticket_id, asyncio.Lock())
        if lock.locked():
            raise AgentBusyError(ticket_id)
        try:
            async with lock:
                yield
        finally:
            if not lock.locked() and self._locks.get(ticket_id) is lock:
                del self._locks[ticket_id]

    def _tools_for(self, ticket_id: str) -> List[Tool]:
        return [*self._tools, *create_human_tools(self.tickets, ticket_id)]

    async def _audit(self, ticket_id: str, type: str, action: str, **extra: Any) -> None:
        await self.tickets.audit.append(
            AuditEntry(ticket_id=ticket_id, type=type, actor="agent", action=action, **extra)
        )

    @staticmethod
    def _check_budget(ticket: Ticket) -> None:
        if ticket.current_turn >= ticket.max_turns:
            raise MaxTurnsExceededError(ticket.max_turns)

    # ------------------------------------------------------------------
    # Operations
    async def run(self, ticket_id: str) -> RunResult:
        """Start or continue the agent on ``ticket_id``."""

        async with self._exclusive(ticket_id):
            ticket = await self.tickets.get(ticket_id)
            self._check_budget(ticket)
            if ticket.is_terminal:
                raise InvalidTransitionError(ticket.status, "in_progress")

            await self._audit(ticket_id, "agent_started", f"Agent started for ticket: {ticket.title}")
            if ticket.status in RESUMABLE_STATUSES:
                ticket = await self.tickets.transition_status(ticket_id, "in_progress")

            tools = self._tools_for(ticket_id)
            entry_usage = await self._usage(ticket_id)
            try:
                if (
                    ticket.plan is not None
                    and ticket.plan.is_approved
                    and ticket.status != "draft"
                ):
                    engine_run = await self.engine.resume_from_approved_plan(
                        ticket_id,
                        ticket.plan,
                        title=ticket.title,
                        description=ticket.description,
                        plan_approval_required=self.plan_approval_required,
                        tools=tools,
                    )
                else:
                    engine_run = await self.engine.start(
                        ticket_id,
                        ticket.title,
                        ticket.description,
                        self.plan_approval_required,
                        tools=tools,
                    )
            except ReasoningError as e:
                return await self._fail(ticket_id, e, entry_usage)
            return await self._finish(ticket_id, engine_run)

    async def resume(
        self, ticket_id: str, human_input: Union[HumanInput, Dict[str, Any]]
    ) -> RunResult:
        """Record ``human_input`` on the ticket and continue the agent with it."""

        try:
            human_input = (
                human_input
                if isinstance(human_input, HumanInput)
                else HumanInput.model_validate(human_input)
            )
        except ValidationError as e:
            raise InputValidationError(str(e)) from e

        async with self._exclusive(ticket_id):
            ticket = await self.tickets.get(ticket_id)
            self._check_budget(ticket)
            if ticket.is_terminal:
                raise InvalidTransitionError(ticket.status, "in_progress")
            if await self.engine.get_state(ticket_id) is None:
                raise AgentNotRunningError(ticket_id)

            await self._record_input(ticket, human_input)
            await self._audit(
                ticket_id, "agent_started", f"Agent resumed with input: {human_input.type}"
            )
            ticket = await self.tickets.get(ticket_id)
            if ticket.status in RESUMABLE_STATUSES:
                await self.tickets.transition_status(ticket_id, "in_progress")

            entry_usage = await self._usage(ticket_id)
            try:
                engine_run = await self.engine.resume(
                    ticket_id, human_input, tools=self._tools_for(ticket_id)
                )
            except ReasoningError as e:
                return await self._fail(ticket_id, e, entry_usage)
            return await self._finish(ticket_id, engine_run)

    async def cancel(self, ticket_id: str) -> None:
        """Discard all workflow state and cancel the ticket."""

        async with self._exclusive(ticket_id):
            await self.tickets.get(ticket_id)
            await self.engine.reset(ticket_id)
            try:
                await self.tickets.transition_status(ticket_id, "cancelled", actor="user")
            except InvalidTransitionError:
                logger.info(f"Ticket {ticket_id} already terminal; cancel is a no-op")
            await self._audit(ticket_id, "agent_completed", "Agent cancelled by user")

    async def pause(self, ticket_id: str) -> Ticket:
        async with self._exclusive(ticket_id):
            return await self.tickets.transition_status(ticket_id, "paused", actor="user")

    async def get_state(self, ticket_id: str) -> Optional[WorkflowState]:
        return await self.engine.get_state(ticket_id)

    async def update_plan_step(
        self, ticket_id: str, index: int, fields: Dict[str, Any]
    ) -> Ticket:
        return await self.tickets.update_plan_step(ticket_id, index, fields)

    async def get_current_step(self, ticket_id: str) -> Optional[PlanStep]:
        return await self.tickets.get_current_step(ticket_id)

    # ------------------------------------------------------------------
    # Outcome mapping
    async def _record_input(self, ticket: Ticket, human_input: HumanInput) -> None:
        ticket_id = ticket.id
        if human_input.type == "answer":
            if ticket.pending_question is None:
                raise NoPendingQuestionError(ticket_id)
            if human_input.answer is None:
                raise InputValidationError("answer is required")
            await self.tickets.answer_question(ticket_id, human_input.answer)
            return

        if ticket.pending_approval is not None:
            if human_input.approved:
                await self.tickets.grant_approval(ticket_id)
            else:
                await self.tickets.deny_approval(ticket_id)
        elif ticket.plan is not None and not ticket.plan.is_approved:
            if human_input.approved:
                await self.tickets.approve_plan(
                    ticket_id, human_input.approved_by or DEFAULT_APPROVER
                )
            else:
                await self.tickets.reject_plan(ticket_id, human_input.approved_by)
        else:
            raise NoPendingApprovalError(ticket_id)

    @staticmethod
    def _target_status(ticket: Ticket, state: WorkflowState) -> TicketStatus:
        if state.phase == "completed":
            if state.error is None:
                return "completed"
            # a rejected plan goes back for rework
            return "draft" if ticket.status == "pending_approval" else "failed"
        if state.phase == "waiting":
            if (
                state.waiting_for == "approval"
                and ticket.pending_approval is None
                and state.plan is not None
                and not state.plan.is_approved
            ):
                return "pending_approval"
            return "awaiting_input"
        return "in_progress"

    async def _move_to(self, ticket_id: str, target: TicketStatus) -> Ticket:
        """Walk the shortest legal path to ``target``, validating every hop."""

        ticket = await self.tickets.get(ticket_id)
        path = transition_path(ticket.status, target)
        if path is None:
            raise InvalidTransitionError(ticket.status, target)
        for status in path:
            if (
                status == "approved"
                and not self.plan_approval_required
                and ticket.plan is not None
                and not ticket.plan.is_approved
            ):
                ticket = await self.tickets.approve_plan(ticket_id, AUTO_APPROVER)
            else:
                ticket = await self.tickets.transition_status(ticket_id, status)
        return ticket

    async def _finish(self, ticket_id: str, engine_run: EngineRun) -> RunResult:
        state = engine_run.state
        if engine_run.phase_calls or engine_run.token_usage.total_tokens:
            await self.tickets.increment_turn(ticket_id, engine_run.token_usage)
        else:
            logger.info(f"Ticket {ticket_id} run made no progress; turn not charged")
        ticket = await self.tickets.get(ticket_id)
        await self._move_to(ticket_id, self._target_status(ticket, state))

        success = state.phase == "completed" and state.error is None
        if state.phase == "completed":
            outcome = "Agent completed successfully" if success else f"Agent stopped: {state.error}"
            await self._audit(ticket_id, "agent_completed", outcome)
        logger.info(
            f"Ticket {ticket_id} run finished in phase {state.phase}"
            + (f" waiting for {state.waiting_for}" if state.waiting_for else "")
        )
        return RunResult(
            ticket_id=ticket_id,
            phase=state.phase,
            success=success,
            error=state.error,
            waiting_for=state.waiting_for if state.phase == "waiting" else None,
            checkpoint_id=engine_run.checkpoint_id,
            token_usage=engine_run.token_usage,
        )

    async def _usage(self, ticket_id: str) -> TokenUsage:
        state = await self.engine.get_state(ticket_id)
        return state.token_usage if state else TokenUsage()

    async def _fail(
        self, ticket_id: str, error: ReasoningError, entry_usage: TokenUsage
    ) -> RunResult:
        logger.error(f"Agent failed for ticket {ticket_id}: {error.message}")
        usage = (await self._usage(ticket_id)).since(entry_usage)
        await self.tickets.increment_turn(ticket_id, usage)
        await self._move_to(ticket_id, "failed")
        await self._audit(
            ticket_id, "error_occurred", f"Agent failed: {error.message}", reasoning=error.code
        )
        return RunResult(
            ticket_id=ticket_id,
            phase="completed",
            success=False,
            error=error.message,
            token_usage=usage,
        )

    # ------------------------------------------------------------------
    # Engine observer
    async def plan_created(self, work_item_id: str, plan: Plan) -> None:
        ticket = await self.tickets.get(work_item_id)
        if ticket.plan is not None and [s.id for s in ticket.plan.steps] == [
            s.id for s in plan.steps
        ]:
            return
        await self.tickets.set_plan(work_item_id, plan)

    async def step_updated(
        self, work_item_id: str, index: int, fields: Dict[str, Any]
    ) -> None:
        try:
            await self.tickets.update_plan_step(work_item_id, index, fields)
        except InputValidationError as e:
            # the workflow state stays authoritative for a diverged ticket plan
            logger.warning(f"Could not mirror step {index} onto ticket {work_item_id}: {e}")

    async def tool_called(
        self, work_item_id: str, name: str, args: Dict[str, Any], result: str
    ) -> None:
        await self._audit(
            work_item_id,
            "tool_called",
            f"Tool called: {name}",
            tool_call=ToolCallInfo(name=name, input=args, output=result),
        )
