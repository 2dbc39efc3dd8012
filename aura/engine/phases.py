"""Workflow phases.

Each phase is an async function ``phase(state, ctx) -> update``. Phases never
mutate ``state``; they return only the fields they own and the driver merges
them with :meth:`WorkflowState.apply`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError

from ..constants import DEFAULT_APPROVER, TASK_COMPLETE_SENTINEL
from ..contracts import Message, Plan, PlanStep, ToolCall, WaitingFor, WorkflowState, utcnow
from ..errors import PlanParseError, ReasoningError, ToolExecutionError
from ..reasoning.base import ReasoningEngine
from ..tools.base import HumanInputRequest, Tool
from .prompts import (
    SYSTEM_PROMPT,
    build_execute_prompt,
    build_plan_prompt,
    build_review_prompt,
)

logger = logging.getLogger(__name__)

StateUpdate = Dict[str, Any]

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass
class PhaseContext:
    """Collaborators available to the phases of one engine invocation."""

    reasoning: ReasoningEngine
    tools: Sequence[Tool] = field(default_factory=list)


class _StepDraft(BaseModel):
    title: str
    description: str = ""


class _PlanDraft(BaseModel):
    summary: str
    steps: List[_StepDraft] = Field(min_length=1)


def parse_plan(content: str) -> Plan:
    """Build a :class:`Plan` from the JSON document in a planning response."""

    match = _JSON_BLOCK.search(content or "")
    if match is None:
        raise PlanParseError("no JSON object found in response")
    try:
        draft = _PlanDraft.model_validate_json(match.group(0))
    except ValidationError as e:
        raise PlanParseError(str(e)) from e
    return Plan(
        summary=draft.summary,
        steps=[
            PlanStep(index=i, title=s.title, description=s.description)
            for i, s in enumerate(draft.steps)
        ],
    )


async def planning(state: WorkflowState, ctx: PhaseContext) -> StateUpdate:
    prompt = build_plan_prompt(state.title, state.description)
    completion = await ctx.reasoning.complete(
        [Message.system(SYSTEM_PROMPT), Message.user(prompt)]
    )
    messages = [Message.user(prompt), Message.assistant(completion.content)]
    try:
        plan = parse_plan(completion.content)
    except PlanParseError as e:
        logger.warning(f"Planning failed for {state.work_item_id}: {e.message}")
        return {
            "messages": messages,
            "token_usage": completion.token_usage,
            "phase": "completed",
            "error": e.message,
        }

    logger.info(f"Created plan with {len(plan.steps)} steps for {state.work_item_id}")
    update: StateUpdate = {
        "messages": messages,
        "token_usage": completion.token_usage,
        "plan": plan,
        "current_step_index": 0,
        "error": None,
    }
    if state.plan_approval_required:
        update.update(phase="waiting", waiting_for="approval")
    else:
        update.update(phase="executing", waiting_for=None)
    return update


def _render_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, HumanInputRequest):
        return str(result)
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)


async def _invoke_tool(
    tool: Optional[Tool], call: ToolCall
) -> Tuple[str, Optional[WaitingFor]]:
    if tool is None:
        return f"Error: Unknown tool: {call.name}", None
    try:
        result = await tool.invoke(call.args)
    except Exception as e:
        error = e if isinstance(e, ToolExecutionError) else ToolExecutionError(call.name, str(e))
        logger.warning(error.message)
        return f"Error: {error.message}", None
    kind = result.kind if isinstance(result, HumanInputRequest) else None
    return _render_result(result), kind


async def executing(state: WorkflowState, ctx: PhaseContext) -> StateUpdate:
    plan = state.plan
    if plan is None:
        return {"phase": "completed", "error": "No plan available"}
    index = state.current_step_index
    if index < 0 or index >= len(plan.steps):
        return {"phase": "completed", "error": f"Invalid step index: {index}"}

    if plan.steps[index].status == "pending":
        plan = plan.with_step(index, status="in_progress", started_at=utcnow())
    step = plan.steps[index]

    new_messages: List[Message] = []
    last = state.messages[-1] if state.messages else None
    if last is None or last.role != "tool":
        new_messages.append(Message.user(build_execute_prompt(plan, step)))

    history = [Message.system(SYSTEM_PROMPT), *state.messages, *new_messages]
    try:
        completion = await ctx.reasoning.complete_with_tools(history, ctx.tools)
    except ReasoningError as e:
        retry_count = step.retry_count + 1
        if retry_count < step.max_retries:
            logger.warning(
                f"Step {index + 1} of {state.work_item_id} failed "
                f"(attempt {retry_count}/{step.max_retries}): {e.message}"
            )
            return {
                "plan": plan.with_step(index, retry_count=retry_count, error=e.message),
                "phase": "executing",
            }
        logger.error(f"Step {index + 1} of {state.work_item_id} exhausted its retries")
        return {
            "plan": plan.with_step(
                index,
                status="failed",
                retry_count=retry_count,
                error=e.message,
                completed_at=utcnow(),
            ),
            "phase": "completed",
            "error": f"Step {index + 1} failed after {retry_count} attempts: {e.message}",
        }

    new_messages.append(Message.assistant(completion.content, completion.tool_calls))

    if completion.tool_calls:
        tools = {tool.name: tool for tool in ctx.tools}
        waiting_for: Optional[WaitingFor] = None
        for call in completion.tool_calls:
            content, requested = await _invoke_tool(tools.get(call.name), call)
            new_messages.append(Message.tool(content, tool_call_id=call.id, name=call.name))
            if requested is not None:
                waiting_for = requested
        update: StateUpdate = {
            "messages": new_messages,
            "token_usage": completion.token_usage,
            "plan": plan,
            "phase": "executing",
        }
        if waiting_for is not None:
            update.update(phase="waiting", waiting_for=waiting_for)
        return update

    plan = plan.with_step(
        index,
        status="completed",
        completed_at=utcnow(),
        output=completion.content or "Step completed",
        error=None,
    )
    return {
        "messages": new_messages,
        "token_usage": completion.token_usage,
        "plan": plan,
        "current_step_index": index + 1,
        "phase": "reviewing",
    }


async def reviewing(state: WorkflowState, ctx: PhaseContext) -> StateUpdate:
    plan = state.plan
    if plan is None:
        return {"phase": "completed", "error": "No plan available for review"}
    if state.current_step_index < len(plan.steps):
        return {"phase": "executing"}

    prompt = build_review_prompt(plan)
    completion = await ctx.reasoning.complete(
        [Message.system(SYSTEM_PROMPT), *state.messages, Message.user(prompt)]
    )
    update: StateUpdate = {
        "messages": [Message.user(prompt), Message.assistant(completion.content)],
        "token_usage": completion.token_usage,
    }
    if TASK_COMPLETE_SENTINEL in completion.content:
        update["phase"] = "completed"
    else:
        # keep iterating on the last step
        update.update(phase="executing", current_step_index=len(plan.steps) - 1)
    return update


async def wait(state: WorkflowState, ctx: Optional[PhaseContext] = None) -> StateUpdate:
    """Consume pending human input. Returns an empty update while none is present."""

    human = state.human_input
    if human is None:
        return {}

    if human.type == "answer":
        return {
            "phase": "executing",
            "waiting_for": None,
            "human_input": None,
            "messages": [Message.user(f"User response: {human.answer}")],
        }

    # no step has started yet, so the approval is for the plan itself
    plan_stage = state.plan is not None and all(
        s.status == "pending" for s in state.plan.steps
    )
    if not human.approved:
        return {
            "phase": "completed",
            "waiting_for": None,
            "human_input": None,
            "error": "Plan was rejected by user" if plan_stage else "Action was rejected by user",
        }

    update: StateUpdate = {
        "phase": "executing",
        "waiting_for": None,
        "human_input": None,
    }
    if state.plan is not None and not state.plan.is_approved:
        update["plan"] = state.plan.model_copy(
            update={
                "approved_at": utcnow(),
                "approved_by": human.approved_by or DEFAULT_APPROVER,
            }
        )
    if plan_stage:
        update["messages"] = [Message.user("Plan approved. Proceeding with execution.")]
    else:
        update["messages"] = [Message.user("Approval granted. Proceeding with action.")]
    return update


PhaseFn = Callable[[WorkflowState, PhaseContext], Awaitable[StateUpdate]]

PHASES: Dict[str, PhaseFn] = {
    "planning": planning,
    "executing": executing,
    "reviewing": reviewing,
    "wait": wait,
}
