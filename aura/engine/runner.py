"""Driver loop that runs workflow phases and checkpoints their results."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

from pydantic_core import to_jsonable_python

from ..checkpoint import CheckpointStore, CheckpointTuple, get_checkpoint_store
from ..constants import DEFAULT_MAX_STEPS_PER_INVOCATION
from ..contracts import HumanInput, Plan, TokenUsage, WorkflowState
from ..errors import AgentNotRunningError
from ..reasoning.base import ReasoningEngine
from ..tools.base import Tool
from .phases import PHASES, PhaseContext, StateUpdate
from .routing import END, route_after, route_from_start

logger = logging.getLogger(__name__)

STATE_CHANNEL = "state"


class WorkflowObserver(Protocol):
    """Receives side effects of phase updates.

    Calls may be repeated when a phase result is replayed after a crash, so
    implementations must be idempotent.
    """

    async def plan_created(self, work_item_id: str, plan: Plan) -> None:
        ...

    async def step_updated(
        self, work_item_id: str, index: int, fields: Dict[str, Any]
    ) -> None:
        ...

    async def tool_called(
        self, work_item_id: str, name: str, args: Dict[str, Any], result: str
    ) -> None:
        ...


@dataclass
class EngineRun:
    """Result of one engine invocation."""

    state: WorkflowState
    token_usage: TokenUsage
    checkpoint_id: Optional[str]
    phase_calls: int = 0


class WorkflowEngine:
    """Drive a work item through planning, executing, reviewing and waiting.

    Every invocation first stores the caller's input as an ``input``
    checkpoint, then alternates between running one phase and storing the
    merged state as a ``loop`` checkpoint. A phase's update is recorded as a
    pending write on the current checkpoint before any observer side effect,
    so a crash between the two is recovered by replaying the write instead of
    calling the phase (and the reasoning engine) again.
    """

    def __init__(
        self,
        reasoning: ReasoningEngine,
        checkpoints: Optional[CheckpointStore] = None,
        *,
        tools: Sequence[Tool] = (),
        observer: Optional[WorkflowObserver] = None,
        max_steps_per_invocation: int = DEFAULT_MAX_STEPS_PER_INVOCATION,
    ) -> None:
        self._reasoning = reasoning
        self._checkpoints = checkpoints or get_checkpoint_store()
        self._tools = list(tools)
        self._observer = observer
        self._max_steps = max_steps_per_invocation

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    # ------------------------------------------------------------------
    # Entry points
    async def start(
        self,
        work_item_id: str,
        title: str,
        description: str,
        plan_approval_required: bool = True,
        *,
        tools: Optional[Sequence[Tool]] = None,
    ) -> EngineRun:
        """Begin (or continue) work on a work item from its title and description."""

        latest = await self._checkpoints.get_latest(work_item_id)
        state, checkpoint_id, entry_usage = await self._load(work_item_id, latest)
        fields: StateUpdate = {
            "title": title,
            "description": description,
            "plan_approval_required": plan_approval_required,
            "error": None,
        }
        if state.phase == "completed":
            fields.update(
                phase="planning",
                plan=None,
                current_step_index=0,
                waiting_for=None,
                human_input=None,
            )
        return await self._invoke(
            state.apply(fields), checkpoint_id, entry_usage, tools
        )

    async def resume(
        self,
        work_item_id: str,
        human_input: Optional[HumanInput] = None,
        *,
        tools: Optional[Sequence[Tool]] = None,
    ) -> EngineRun:
        """Continue a suspended work item, optionally with human input."""

        latest = await self._checkpoints.get_latest(work_item_id)
        if latest is None:
            raise AgentNotRunningError(work_item_id)
        state, checkpoint_id, entry_usage = await self._load(work_item_id, latest)
        if human_input is not None:
            if route_from_start(state) == "wait" and human_input.type == state.waiting_for:
                state = state.apply({"human_input": human_input})
            else:
                logger.warning(
                    f"Ignoring {human_input.type} input for {work_item_id}: "
                    f"workflow is {state.phase}"
                    + (f" waiting for {state.waiting_for}" if state.waiting_for else "")
                )
        return await self._invoke(state, checkpoint_id, entry_usage, tools)

    async def resume_from_approved_plan(
        self,
        work_item_id: str,
        plan: Plan,
        *,
        title: str = "",
        description: str = "",
        plan_approval_required: bool = True,
        tools: Optional[Sequence[Tool]] = None,
    ) -> EngineRun:
        """Run a work item whose plan was approved outside the engine.

        The state is positioned on the approval checkpoint with an approving
        input, so routing continues with execution instead of re-planning.
        A state that is already executing the same plan simply continues, and
        one suspended on a question or an action approval stays suspended.
        """

        latest = await self._checkpoints.get_latest(work_item_id)
        state, checkpoint_id, entry_usage = await self._load(work_item_id, latest)
        fields: StateUpdate = {
            "title": title or state.title,
            "description": description or state.description,
            "plan_approval_required": plan_approval_required,
            "error": None,
        }
        continuing = (
            state.plan is not None
            and [s.id for s in state.plan.steps] == [s.id for s in plan.steps]
            and (
                state.phase in ("executing", "reviewing")
                or (
                    state.phase == "waiting"
                    and (
                        state.waiting_for == "answer"
                        or any(step.status != "pending" for step in state.plan.steps)
                    )
                )
            )
        )
        if continuing:
            fields["plan"] = state.plan.model_copy(
                update={"approved_at": plan.approved_at, "approved_by": plan.approved_by}
            )
        else:
            fields.update(
                plan=plan,
                phase="waiting",
                waiting_for="approval",
                human_input=HumanInput(
                    type="approval", approved=True, approved_by=plan.approved_by
                ),
            )
            if state.plan is None:
                fields["current_step_index"] = 0
        return await self._invoke(
            state.apply(fields), checkpoint_id, entry_usage, tools
        )

    async def get_state(self, work_item_id: str) -> Optional[WorkflowState]:
        latest = await self._checkpoints.get_latest(work_item_id)
        if latest is None:
            return None
        return WorkflowState.from_snapshot(latest.snapshot)

    async def reset(self, work_item_id: str) -> None:
        """Delete every checkpoint of the work item."""
        await self._checkpoints.delete_all(work_item_id)
        logger.info(f"Reset workflow state for {work_item_id}")

    # ------------------------------------------------------------------
    # Driver
    async def _load(
        self, work_item_id: str, latest: Optional[CheckpointTuple]
    ) -> tuple[WorkflowState, Optional[str], TokenUsage]:
        """Return the current state, recovering an interrupted phase first."""

        if latest is None:
            state = WorkflowState(work_item_id=work_item_id)
            return state, None, state.token_usage

        state = WorkflowState.from_snapshot(latest.snapshot)
        entry_usage = state.token_usage
        checkpoint_id = latest.checkpoint_id
        update = None
        if latest.pending_writes:
            task_id = latest.pending_writes[-1].task_id
            node = task_id.split(":", 1)[0]
            update = self._replay(latest, task_id)
        if update is not None:
            logger.info(
                f"Recovering interrupted phase {node} for {work_item_id} "
                f"from checkpoint {checkpoint_id}"
            )
            new_state = state.apply(update)
            await self._notify(state, new_state)
            checkpoint_id = await self._put(
                new_state, checkpoint_id, source="loop", node=node
            )
            state = new_state
        return state, checkpoint_id, entry_usage

    @staticmethod
    def _replay(checkpoint: CheckpointTuple, task_id: str) -> Optional[StateUpdate]:
        for write in reversed(checkpoint.writes_for(task_id)):
            if write.channel == STATE_CHANNEL:
                return write.value
        return None

    async def _put(
        self,
        state: WorkflowState,
        parent_checkpoint_id: Optional[str],
        *,
        source: str,
        node: Optional[str] = None,
    ) -> str:
        metadata: Dict[str, Any] = {"source": source, "phase": state.phase}
        if node is not None:
            metadata["node"] = node
        checkpoint_id = await self._checkpoints.put(
            state.work_item_id,
            state.to_snapshot(),
            metadata,
            parent_checkpoint_id=parent_checkpoint_id,
        )
        logger.debug(
            f"Stored {source} checkpoint {checkpoint_id} for {state.work_item_id}"
        )
        return checkpoint_id

    async def _invoke(
        self,
        state: WorkflowState,
        parent_checkpoint_id: Optional[str],
        entry_usage: TokenUsage,
        tools: Optional[Sequence[Tool]],
    ) -> EngineRun:
        work_item_id = state.work_item_id
        ctx = PhaseContext(
            reasoning=self._reasoning,
            tools=list(tools) if tools is not None else self._tools,
        )
        checkpoint_id = await self._put(state, parent_checkpoint_id, source="input")

        node = route_from_start(state)
        steps = 0
        while node != END:
            if node == "wait" and state.human_input is None:
                logger.info(f"Workflow {work_item_id} suspended waiting for {state.waiting_for}")
                break
            if steps >= self._max_steps:
                logger.info(
                    f"Workflow {work_item_id} reached {self._max_steps} phase calls; "
                    "continuing on the next invocation"
                )
                break

            task_id = f"{node}:{checkpoint_id}"
            logger.info(f"Running phase {node} for {work_item_id}")
            update = to_jsonable_python(await PHASES[node](state, ctx))
            await self._checkpoints.append_pending_write(
                work_item_id, checkpoint_id, task_id, [(STATE_CHANNEL, update)]
            )

            new_state = state.apply(update)
            await self._notify(state, new_state)
            checkpoint_id = await self._put(
                new_state, checkpoint_id, source="loop", node=node
            )
            if new_state.phase != state.phase:
                logger.info(
                    f"Workflow {work_item_id} phase {state.phase} -> {new_state.phase}"
                )
            state = new_state
            steps += 1
            node = route_after(node, state)

        return EngineRun(
            state=state,
            token_usage=state.token_usage.since(entry_usage),
            checkpoint_id=checkpoint_id,
            phase_calls=steps,
        )

    async def _notify(self, before: WorkflowState, after: WorkflowState) -> None:
        if self._observer is None:
            return
        work_item_id = after.work_item_id

        if after.plan is not None:
            before_ids = [s.id for s in before.plan.steps] if before.plan else None
            if before_ids != [s.id for s in after.plan.steps]:
                await self._observer.plan_created(work_item_id, after.plan)
            else:
                for old, new in zip(before.plan.steps, after.plan.steps):
                    old_data, new_data = old.model_dump(), new.model_dump()
                    changed = {k: v for k, v in new_data.items() if old_data[k] != v}
                    if changed:
                        await self._observer.step_updated(work_item_id, new.index, changed)

        new_messages = after.messages[len(before.messages):]
        calls = {
            call.id: call
            for message in new_messages
            if message.role == "assistant"
            for call in message.tool_calls
        }
        for message in new_messages:
            if message.role != "tool":
                continue
            call = calls.get(message.tool_call_id or "")
            await self._observer.tool_called(
                work_item_id,
                message.name or "",
                call.args if call else {},
                message.content,
            )

