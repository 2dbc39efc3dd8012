import pytest

from aura.contracts import Plan, PlanStep, TokenUsage
from aura.errors import (
    InputValidationError,
    InvalidTransitionError,
    NoPendingApprovalError,
    NoPendingQuestionError,
    NoPlanError,
    TicketNotFoundError,
)
from aura.tickets import (
    VALID_TRANSITIONS,
    CommitInfo,
    PendingApproval,
    PendingQuestion,
    can_transition,
    transition_path,
)

ALL_STATUSES = list(VALID_TRANSITIONS)

ALLOWED = {
    ("draft", "pending_approval"),
    ("draft", "cancelled"),
    ("pending_approval", "approved"),
    ("pending_approval", "draft"),
    ("pending_approval", "cancelled"),
    ("approved", "in_progress"),
    ("approved", "cancelled"),
    ("in_progress", "awaiting_input"),
    ("in_progress", "paused"),
    ("in_progress", "completed"),
    ("in_progress", "failed"),
    ("in_progress", "cancelled"),
    ("awaiting_input", "in_progress"),
    ("awaiting_input", "paused"),
    ("awaiting_input", "cancelled"),
    ("paused", "in_progress"),
    ("paused", "cancelled"),
    ("failed", "draft"),
    ("cancelled", "draft"),
}


@pytest.mark.parametrize("source", ALL_STATUSES)
@pytest.mark.parametrize("target", ALL_STATUSES)
def test_transition_table(source, target):
    assert can_transition(source, target) == ((source, target) in ALLOWED)


def test_transition_path():
    assert transition_path("draft", "draft") == []
    assert transition_path("draft", "in_progress") == ["pending_approval", "approved", "in_progress"]
    assert transition_path("awaiting_input", "completed") == ["in_progress", "completed"]
    assert transition_path("completed", "draft") is None


def _plan():
    return Plan(
        summary="Two steps",
        steps=[PlanStep(index=i, title=f"Step {i + 1}", description="") for i in range(2)],
    )


async def _ticket(tickets, **extra):
    return await tickets.create({"title": "Add login", "description": "Users need to log in", **extra})


@pytest.mark.asyncio
async def test_create_uses_defaults_and_audits(tickets):
    ticket = await _ticket(tickets)

    assert ticket.status == "draft"
    assert ticket.priority == "medium"
    assert ticket.max_turns == 50
    assert ticket.current_turn == 0
    assert (await tickets.get(ticket.id)).title == "Add login"
    entries = await tickets.audit.query(ticket.id)
    assert [e.type for e in entries] == ["ticket_created"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data",
    [
        {"title": "", "description": "x"},
        {"title": "x"},
        {"title": "x", "description": "y", "priority": "urgent"},
        {"title": "x", "description": "y", "max_turns": 0},
    ],
)
async def test_create_rejects_invalid_input(tickets, data):
    with pytest.raises(InputValidationError):
        await tickets.create(data)


@pytest.mark.asyncio
async def test_get_update_list_delete(tickets):
    first = await _ticket(tickets)
    second = await _ticket(tickets, priority="high")

    updated = await tickets.update(first.id, {"title": "Add SSO login"})
    assert updated.title == "Add SSO login"
    assert updated.updated_at >= first.updated_at

    assert [t.id for t in await tickets.list()] == [second.id, first.id]
    await tickets.transition_status(first.id, "cancelled")
    assert [t.id for t in await tickets.list("cancelled")] == [first.id]

    await tickets.delete(second.id)
    with pytest.raises(TicketNotFoundError):
        await tickets.get(second.id)
    with pytest.raises(TicketNotFoundError):
        await tickets.update("missing", {"title": "x"})


@pytest.mark.asyncio
async def test_transition_status_sets_resolved_at(tickets):
    ticket = await _ticket(tickets)

    cancelled = await tickets.transition_status(ticket.id, "cancelled", actor="user")
    assert cancelled.resolved_at is not None

    reopened = await tickets.transition_status(ticket.id, "draft")
    assert reopened.resolved_at is None

    with pytest.raises(InvalidTransitionError) as exc:
        await tickets.transition_status(ticket.id, "completed")
    assert exc.value.from_status == "draft"
    assert exc.value.to_status == "completed"

    change = (await tickets.audit.query(ticket.id, type="status_changed"))[-1]
    assert change.actor == "user"
    assert change.state_change.old_value == "draft"
    assert change.state_change.new_value == "cancelled"


@pytest.mark.asyncio
async def test_plan_approval(tickets):
    ticket = await _ticket(tickets)
    with pytest.raises(NoPlanError):
        await tickets.approve_plan(ticket.id, "zoe")

    await tickets.set_plan(ticket.id, _plan())
    # draft cannot be approved directly
    with pytest.raises(InvalidTransitionError):
        await tickets.approve_plan(ticket.id, "zoe")

    await tickets.transition_status(ticket.id, "pending_approval")
    approved = await tickets.approve_plan(ticket.id, "zoe")
    assert approved.status == "approved"
    assert approved.plan.approved_by == "zoe"
    assert approved.plan.is_approved


@pytest.mark.asyncio
async def test_update_plan_step_and_current_step(tickets):
    ticket = await _ticket(tickets)
    assert await tickets.get_current_step(ticket.id) is None
    with pytest.raises(NoPlanError):
        await tickets.update_plan_step(ticket.id, 0, {"status": "in_progress"})

    await tickets.set_plan(ticket.id, _plan())
    await tickets.update_plan_step(ticket.id, 1, {"status": "in_progress"})

    step = await tickets.get_current_step(ticket.id)
    assert step.index == 1
    assert step.title == "Step 2"

    with pytest.raises(InputValidationError):
        await tickets.update_plan_step(ticket.id, 5, {"status": "completed"})
    with pytest.raises(InputValidationError):
        await tickets.update_plan_step(ticket.id, 0, {"colour": "blue"})


@pytest.mark.asyncio
async def test_update_plan_step_validates_values(tickets):
    ticket = await _ticket(tickets)
    await tickets.set_plan(ticket.id, _plan())

    with pytest.raises(InputValidationError):
        await tickets.update_plan_step(ticket.id, 0, {"status": "bogus"})
    with pytest.raises(InputValidationError):
        await tickets.update_plan_step(ticket.id, 0, {"retry_count": "many"})
    with pytest.raises(InputValidationError):
        await tickets.update_plan_step(ticket.id, 0, {"index": 7})

    ticket = await tickets.get(ticket.id)
    assert [s.status for s in ticket.plan.steps] == ["pending", "pending"]
    assert ticket.plan.steps[0].index == 0

    updated = await tickets.update_plan_step(ticket.id, 0, {"retry_count": "2"})
    assert updated.plan.steps[0].retry_count == 2


@pytest.mark.asyncio
async def test_only_one_plan_step_in_progress(tickets):
    ticket = await _ticket(tickets)
    await tickets.set_plan(ticket.id, _plan())
    await tickets.update_plan_step(ticket.id, 0, {"status": "in_progress"})

    with pytest.raises(InputValidationError):
        await tickets.update_plan_step(ticket.id, 1, {"status": "in_progress"})
    # re-marking the running step is fine
    await tickets.update_plan_step(ticket.id, 0, {"status": "in_progress"})

    await tickets.update_plan_step(ticket.id, 0, {"status": "completed"})
    ticket = await tickets.update_plan_step(ticket.id, 1, {"status": "in_progress"})
    assert [s.status for s in ticket.plan.steps] == ["completed", "in_progress"]


@pytest.mark.asyncio
async def test_pending_approval_and_question(tickets):
    ticket = await _ticket(tickets)
    with pytest.raises(NoPendingApprovalError):
        await tickets.grant_approval(ticket.id)
    with pytest.raises(NoPendingQuestionError):
        await tickets.answer_question(ticket.id, "yes")

    await tickets.request_approval(
        ticket.id, PendingApproval(type="action", description="Delete branch")
    )
    assert (await tickets.get(ticket.id)).pending_approval.description == "Delete branch"
    await tickets.deny_approval(ticket.id)
    assert (await tickets.get(ticket.id)).pending_approval is None

    await tickets.ask_question(ticket.id, PendingQuestion(question="Which branch?"))
    answered = await tickets.answer_question(ticket.id, "main")
    assert answered.pending_question is None

    types = [e.type for e in await tickets.audit.query(ticket.id)]
    assert types[:4] == ["question_answered", "question_asked", "approval_denied", "approval_requested"]


@pytest.mark.asyncio
async def test_increment_turn_accumulates_usage(tickets):
    ticket = await _ticket(tickets)
    usage = TokenUsage(input_tokens=3, output_tokens=2, total_tokens=5)

    await tickets.increment_turn(ticket.id, usage)
    ticket = await tickets.increment_turn(ticket.id, usage)

    assert ticket.current_turn == 2
    assert ticket.token_usage == TokenUsage(input_tokens=6, output_tokens=4, total_tokens=10)
    turn = (await tickets.audit.query(ticket.id, type="turn_completed", limit=1))[0]
    assert turn.action == "Turn 2 completed"


@pytest.mark.asyncio
async def test_commits_and_branch(tickets):
    ticket = await _ticket(tickets)
    await tickets.set_working_branch(ticket.id, "aura/add-login")
    ticket = await tickets.add_commit(ticket.id, CommitInfo(sha="abcdef123456", message="Add form"))

    assert ticket.working_branch == "aura/add-login"
    assert [c.sha for c in ticket.commits] == ["abcdef123456"]
    entry = (await tickets.audit.query(ticket.id, type="commit_created"))[0]
    assert entry.action == "Commit created: abcdef1"
