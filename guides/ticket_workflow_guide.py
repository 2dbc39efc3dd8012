"""Aura ticket workflow walkthrough.

Runs a ticket through planning, approval and execution with a scripted
pydantic-ai ``FunctionModel``, so no API key is needed. Swap in a real model
(e.g. ``PydanticAIReasoningEngine.from_config(load_config().llm)``) to use an
actual LLM.
"""

import asyncio
import json

from pydantic_ai.messages import ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models.function import FunctionModel

from aura import (
    AuraConfig,
    LifecycleController,
    PydanticAIReasoningEngine,
    TicketService,
)
from aura.checkpoint import InMemoryCheckpointStore

PLAN = {
    "summary": "Add a health endpoint",
    "steps": [
        {"title": "Add route", "description": "Expose GET /health"},
        {"title": "Add test", "description": "Cover the new route"},
    ],
}


def scripted_model(messages, info) -> ModelResponse:
    prompt = ""
    for part in messages[-1].parts:
        if isinstance(part, UserPromptPart):
            prompt = part.content
    if "Create a detailed plan" in prompt:
        return ModelResponse(parts=[TextPart(content=json.dumps(PLAN))])
    if "Review the work done" in prompt:
        return ModelResponse(parts=[TextPart(content="Everything works. TASK_COMPLETE")])
    return ModelResponse(parts=[TextPart(content="Step finished")])


async def plan_and_approve():
    """Plan a ticket, wait for approval, then run it to completion."""
    print("🚀 Ticket workflow with plan approval")

    tickets = TicketService()
    controller = LifecycleController(
        tickets,
        PydanticAIReasoningEngine(FunctionModel(scripted_model)),
        InMemoryCheckpointStore(),
        config=AuraConfig(),
    )

    ticket = await tickets.create(
        {"title": "Health check", "description": "Add a /health endpoint"}
    )
    result = await controller.run(ticket.id)
    ticket = await tickets.get(ticket.id)
    print(f"⏸️  {result.phase} for {result.waiting_for}, ticket is {ticket.status}")
    for step in ticket.plan.steps:
        print(f"   {step.index + 1}. {step.title}")

    result = await controller.resume(
        ticket.id, {"type": "approval", "approved": True, "approved_by": "guide"}
    )
    ticket = await tickets.get(ticket.id)
    print(f"✅ {result.phase} (success={result.success}), ticket is {ticket.status}")
    print(f"   turns: {ticket.current_turn}, tokens: {ticket.token_usage.total_tokens}")


async def main():
    await plan_and_approve()


if __name__ == "__main__":
    asyncio.run(main())
