"""Human-in-the-loop tools."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field

from ..contracts import utcnow
from ..tickets.models import PendingApproval, PendingQuestion
from .base import FunctionTool, HumanInputRequest

if TYPE_CHECKING:
    from ..tickets.service import TicketService


class AskQuestionInput(BaseModel):
    question: str = Field(description="The question to ask the user")
    options: Optional[List[str]] = Field(
        default=None, description="Optional list of suggested answers"
    )


class RequestApprovalInput(BaseModel):
    description: str = Field(description="Description of what needs approval")
    action_type: Literal["plan", "action", "resource"] = Field(
        default="action", description="Type of approval being requested"
    )
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Additional details about the action"
    )


def create_human_tools(
    ticket_service: "TicketService", ticket_id: str
) -> List[FunctionTool]:
    """Return the ``ask_question`` and ``request_approval`` tools for a ticket.

    Both record the request on the ticket and return a
    :class:`HumanInputRequest`, which suspends the workflow until the person
    answers through ``LifecycleController.resume``.
    """

    async def ask_question(
        question: str, options: Optional[List[str]] = None
    ) -> HumanInputRequest:
        await ticket_service.ask_question(
            ticket_id,
            PendingQuestion(question=question, options=options or [], asked_at=utcnow()),
        )
        return HumanInputRequest(kind="answer", prompt=question, options=options or [])

    async def request_approval(
        description: str,
        action_type: str = "action",
        details: Optional[Dict[str, Any]] = None,
    ) -> HumanInputRequest:
        await ticket_service.request_approval(
            ticket_id,
            PendingApproval(
                type=action_type,
                description=description,
                details=details or {},
                requested_at=utcnow(),
            ),
        )
        return HumanInputRequest(kind="approval", prompt=description)

    return [
        FunctionTool(
            name="ask_question",
            description=(
                "Ask the user a question and wait for their response. Use this "
                "when you need clarification or input from the user."
            ),
            func=ask_question,
            input_model=AskQuestionInput,
        ),
        FunctionTool(
            name="request_approval",
            description=(
                "Request approval from the user before proceeding with an action. "
                "Use this for destructive operations or significant changes."
            ),
            func=request_approval,
            input_model=RequestApprovalInput,
        ),
    ]
