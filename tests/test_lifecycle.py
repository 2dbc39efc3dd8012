"""End to end lifecycle tests: tickets driven through the workflow engine."""

import asyncio

import pytest

from aura.errors import (
    AgentBusyError,
    AgentNotRunningError,
    InputValidationError,
    InvalidTransitionError,
    MaxTurnsExceededError,
    NoPendingApprovalError,
    NoPendingQuestionError,
    ReasoningError,
)
from aura.reasoning import Completion

from tests.helpers import USAGE, plan_json, tool_calls


async def _ticket(tickets, **extra):
    return await tickets.create({"title": "Add login", "description": "Users need to log in", **extra})


@pytest.mark.asyncio
async def test_run_waits_for_plan_approval(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form", "Add route")])
    ticket = await _ticket(tickets)

    result = await controller.run(ticket.id)

    assert result.phase == "waiting"
    assert result.waiting_for == "approval"
    assert result.success is False
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "pending_approval"
    assert ticket.plan is not None
    assert ticket.plan.approved_at is None
    assert [s.title for s in ticket.plan.steps] == ["Add form", "Add route"]
    assert ticket.current_turn == 1
    assert ticket.token_usage == USAGE


@pytest.mark.asyncio
async def test_approved_plan_runs_to_completion(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form"), "Form added", "TASK_COMPLETE"])
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    result = await controller.resume(
        ticket.id, {"type": "approval", "approved": True, "approved_by": "dana"}
    )

    assert result.phase == "completed"
    assert result.success is True
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "completed"
    assert ticket.resolved_at is not None
    assert ticket.plan.approved_by == "dana"
    assert ticket.plan.steps[0].status == "completed"
    assert ticket.plan.steps[0].output == "Form added"
    assert ticket.current_turn == 2
    assert ticket.token_usage.total_tokens == 45

    statuses = [
        e.state_change.new_value
        for e in reversed(await tickets.audit.query(ticket.id, type="status_changed"))
    ]
    assert statuses == ["pending_approval", "approved", "in_progress", "completed"]


@pytest.mark.asyncio
async def test_rejected_plan_returns_ticket_to_draft(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    result = await controller.resume(ticket.id, {"type": "approval", "approved": False})

    assert result.phase == "completed"
    assert result.success is False
    assert "rejected" in result.error
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "draft"
    assert await tickets.audit.query(ticket.id, type="plan_rejected")


@pytest.mark.asyncio
async def test_unparseable_plan_fails_the_ticket(tickets, make_controller):
    controller, _ = make_controller(["Sorry, I can't produce JSON today"])
    ticket = await _ticket(tickets)

    result = await controller.run(ticket.id)

    assert result.phase == "completed"
    assert result.success is False
    assert "JSON" in result.error
    assert (await tickets.get(ticket.id)).status == "failed"


@pytest.mark.asyncio
async def test_plan_approved_outside_the_engine_goes_straight_to_executing(
    tickets, make_controller
):
    controller, reasoning = make_controller(
        [plan_json("Add form"), "Form added", "TASK_COMPLETE"]
    )
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)
    await tickets.approve_plan(ticket.id, "erin")
    assert (await tickets.get(ticket.id)).status == "approved"

    result = await controller.run(ticket.id)

    assert result.success is True
    assert [c[0] for c in reasoning.calls] == ["complete", "complete_with_tools", "complete"]
    state = await controller.get_state(ticket.id)
    assert state.plan.approved_by == "erin"
    assert (await tickets.get(ticket.id)).status == "completed"


@pytest.mark.asyncio
async def test_auto_approval_when_not_required(tickets, make_controller):
    controller, _ = make_controller(
        [plan_json("Add form"), "Form added", "TASK_COMPLETE"], plan_approval_required=False
    )
    ticket = await _ticket(tickets)

    result = await controller.run(ticket.id)

    assert result.success is True
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "completed"
    assert ticket.plan.approved_by == "auto"
    assert await tickets.audit.query(ticket.id, type="plan_approved")


@pytest.mark.asyncio
async def test_question_flow_with_pause(tickets, make_controller):
    controller, reasoning = make_controller(
        [
            plan_json("Configure database"),
            tool_calls(("ask_question", {"question": "Which database?", "options": ["sqlite", "postgres"]})),
            "Configured postgres",
            "TASK_COMPLETE",
        ],
        plan_approval_required=False,
    )
    ticket = await _ticket(tickets)

    result = await controller.run(ticket.id)

    assert result.phase == "waiting"
    assert result.waiting_for == "answer"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "awaiting_input"
    assert ticket.pending_question.question == "Which database?"
    assert ticket.pending_question.options == ["sqlite", "postgres"]
    assert (await controller.get_current_step(ticket.id)).title == "Configure database"

    paused = await controller.pause(ticket.id)
    assert paused.status == "paused"

    result = await controller.resume(ticket.id, {"type": "answer", "answer": "postgres"})

    assert result.success is True
    ticket = await tickets.get(ticket.id)
    assert ticket.pending_question is None
    assert ticket.status == "completed"
    _, messages, _ = reasoning.calls[2]
    assert any(m.content == "User response: postgres" for m in messages)

    tool_entries = await tickets.audit.query(ticket.id, type="tool_called")
    assert tool_entries[0].tool_call.name == "ask_question"
    assert await tickets.audit.query(ticket.id, type="question_answered")


@pytest.mark.asyncio
async def test_action_approval_flow(tickets, make_controller):
    controller, _ = make_controller(
        [
            plan_json("Drop table"),
            tool_calls(("request_approval", {"description": "Drop the users table"})),
            "Dropped",
            "TASK_COMPLETE",
        ],
        plan_approval_required=False,
    )
    ticket = await _ticket(tickets)

    result = await controller.run(ticket.id)

    assert result.waiting_for == "approval"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "awaiting_input"
    assert ticket.pending_approval.type == "action"

    result = await controller.resume(ticket.id, {"type": "approval", "approved": True})

    assert result.success is True
    ticket = await tickets.get(ticket.id)
    assert ticket.pending_approval is None
    assert await tickets.audit.query(ticket.id, type="approval_granted")


@pytest.mark.asyncio
async def test_answer_without_pending_question_is_rejected(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    with pytest.raises(NoPendingQuestionError):
        await controller.resume(ticket.id, {"type": "answer", "answer": "yes"})
    with pytest.raises(InputValidationError):
        await controller.resume(ticket.id, {"type": "maybe"})


@pytest.mark.asyncio
async def test_resume_before_any_run_raises(tickets, make_controller):
    controller, _ = make_controller()
    ticket = await _ticket(tickets)

    with pytest.raises(AgentNotRunningError):
        await controller.resume(ticket.id, {"type": "approval", "approved": True})


@pytest.mark.asyncio
async def test_turn_budget_is_enforced(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets, max_turns=1)
    await controller.run(ticket.id)

    with pytest.raises(MaxTurnsExceededError):
        await controller.resume(ticket.id, {"type": "approval", "approved": True})
    assert (await tickets.get(ticket.id)).current_turn == 1


@pytest.mark.asyncio
async def test_reasoning_failure_fails_the_ticket(tickets, make_controller):
    controller, _ = make_controller([ReasoningError("service unavailable")])
    ticket = await _ticket(tickets)

    result = await controller.run(ticket.id)

    assert result.success is False
    assert result.error == "LLM error: service unavailable"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "failed"
    assert ticket.current_turn == 1
    errors = await tickets.audit.query(ticket.id, type="error_occurred")
    assert errors[0].reasoning == "LLM_ERROR"

    with pytest.raises(InvalidTransitionError):
        await controller.run(ticket.id)


@pytest.mark.asyncio
async def test_cancel_discards_workflow_state(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    await controller.cancel(ticket.id)

    assert (await tickets.get(ticket.id)).status == "cancelled"
    assert await controller.get_state(ticket.id) is None
    with pytest.raises(InvalidTransitionError):
        await controller.run(ticket.id)


class BlockingReasoningEngine:
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, messages):
        self.started.set()
        await self.release.wait()
        return Completion(content=plan_json("Add form"), token_usage=USAGE)

    async def complete_with_tools(self, messages, tools):
        raise AssertionError("not expected")


@pytest.mark.asyncio
async def test_concurrent_run_is_rejected(tickets, make_controller):
    controller, _ = make_controller()
    blocking = BlockingReasoningEngine()
    controller.engine._reasoning = blocking
    ticket = await _ticket(tickets)

    first = asyncio.create_task(controller.run(ticket.id))
    await blocking.started.wait()

    with pytest.raises(AgentBusyError):
        await controller.run(ticket.id)
    with pytest.raises(AgentBusyError):
        await controller.resume(ticket.id, {"type": "approval", "approved": True})

    blocking.release.set()
    result = await first
    assert result.waiting_for == "approval"


@pytest.mark.asyncio
async def test_turns_and_tokens_never_decrease(tickets, make_controller):
    controller, _ = make_controller(
        [
            plan_json("Add form"),
            tool_calls(("ask_question", {"question": "Color?"})),
            "Done",
            "TASK_COMPLETE",
        ],
        plan_approval_required=False,
    )
    ticket = await _ticket(tickets)

    seen = []
    await controller.run(ticket.id)
    seen.append(await tickets.get(ticket.id))
    await controller.resume(ticket.id, {"type": "answer", "answer": "blue"})
    seen.append(await tickets.get(ticket.id))

    assert [t.current_turn for t in seen] == [1, 2]
    assert seen[0].token_usage.total_tokens == 30
    assert seen[1].token_usage.total_tokens == 60


@pytest.mark.asyncio
async def test_approval_while_executing_is_rejected(tickets, make_controller):
    controller, reasoning = make_controller(
        [
            plan_json("Clean up"),
            tool_calls(("request_approval", {"description": "Drop the users table"})),
        ],
        plan_approval_required=False,
        max_steps=1,
    )
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)
    assert (await tickets.get(ticket.id)).status == "in_progress"
    assert (await controller.get_state(ticket.id)).phase == "executing"

    with pytest.raises(NoPendingApprovalError):
        await controller.resume(ticket.id, {"type": "approval", "approved": True})

    ticket = await tickets.get(ticket.id)
    assert ticket.status == "in_progress"
    assert ticket.current_turn == 1
    assert len(reasoning.calls) == 1
    assert (await controller.get_state(ticket.id)).human_input is None

    # the later action request still waits for a person
    result = await controller.run(ticket.id)

    assert result.phase == "waiting"
    assert result.waiting_for == "approval"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "awaiting_input"
    assert ticket.pending_approval.description == "Drop the users table"


@pytest.mark.asyncio
async def test_input_must_match_what_the_agent_waits_for(tickets, make_controller):
    controller, _ = make_controller(
        [
            plan_json("Configure database"),
            tool_calls(("ask_question", {"question": "Which database?"})),
        ],
        plan_approval_required=False,
    )
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    with pytest.raises(NoPendingApprovalError):
        await controller.resume(ticket.id, {"type": "approval", "approved": True})

    ticket = await tickets.get(ticket.id)
    assert ticket.status == "awaiting_input"
    assert ticket.pending_question.question == "Which database?"
    state = await controller.get_state(ticket.id)
    assert state.waiting_for == "answer"
    assert state.human_input is None


@pytest.mark.asyncio
async def test_answer_while_waiting_for_plan_approval_is_rejected(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    with pytest.raises(NoPendingQuestionError):
        await controller.resume(ticket.id, {"type": "answer", "answer": "yes"})

    ticket = await tickets.get(ticket.id)
    assert ticket.status == "pending_approval"
    assert not ticket.plan.is_approved


@pytest.mark.asyncio
async def test_run_keeps_a_pending_question(tickets, make_controller):
    controller, reasoning = make_controller(
        [
            plan_json("Configure database"),
            tool_calls(("ask_question", {"question": "Which database?"})),
            "Configured postgres",
            "TASK_COMPLETE",
        ],
        plan_approval_required=False,
    )
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    result = await controller.run(ticket.id)

    assert result.phase == "waiting"
    assert result.waiting_for == "answer"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "awaiting_input"
    assert ticket.pending_question.question == "Which database?"
    assert ticket.current_turn == 1
    assert len(reasoning.calls) == 2

    result = await controller.resume(ticket.id, {"type": "answer", "answer": "postgres"})
    assert result.success is True


@pytest.mark.asyncio
async def test_run_keeps_a_pending_action_approval(tickets, make_controller):
    controller, reasoning = make_controller(
        [
            plan_json("Drop table"),
            tool_calls(("request_approval", {"description": "Drop the users table"})),
            "Dropped",
            "TASK_COMPLETE",
        ],
        plan_approval_required=False,
    )
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)
    await controller.pause(ticket.id)

    result = await controller.run(ticket.id)

    assert result.waiting_for == "approval"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "awaiting_input"
    assert ticket.pending_approval.type == "action"
    assert len(reasoning.calls) == 2

    result = await controller.resume(ticket.id, {"type": "approval", "approved": True})
    assert result.success is True


@pytest.mark.asyncio
async def test_idle_run_does_not_charge_a_turn(tickets, make_controller):
    controller, reasoning = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets)
    await controller.run(ticket.id)

    result = await controller.run(ticket.id)
    await controller.run(ticket.id)

    assert result.waiting_for == "approval"
    ticket = await tickets.get(ticket.id)
    assert ticket.status == "pending_approval"
    assert ticket.current_turn == 1
    assert ticket.token_usage == USAGE
    assert len(reasoning.calls) == 1


@pytest.mark.asyncio
async def test_ticket_locks_are_released(tickets, make_controller):
    controller, _ = make_controller([plan_json("Add form")])
    ticket = await _ticket(tickets)

    await controller.run(ticket.id)
    with pytest.raises(NoPendingQuestionError):
        await controller.resume(ticket.id, {"type": "answer", "answer": "yes"})
    await controller.cancel(ticket.id)

    assert controller._locks == {}
