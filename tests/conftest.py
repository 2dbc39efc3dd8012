import pytest

from aura.checkpoint import InMemoryCheckpointStore
from aura.config import AgentConfig, AuraConfig
from aura.lifecycle import LifecycleController
from aura.tickets import TicketService

from tests.helpers import ScriptedReasoningEngine


@pytest.fixture
def checkpoints():
    return InMemoryCheckpointStore()


@pytest.fixture
def tickets():
    return TicketService()


@pytest.fixture
def make_controller(tickets, checkpoints):
    def factory(responses=(), plan_approval_required=True, max_steps=25, tools=()):
        reasoning = ScriptedReasoningEngine(responses)
        config = AuraConfig(
            agent=AgentConfig(
                plan_approval_required=plan_approval_required,
                max_steps_per_invocation=max_steps,
            )
        )
        controller = LifecycleController(
            tickets, reasoning, checkpoints, config=config, tools=tools
        )
        return controller, reasoning

    return factory
