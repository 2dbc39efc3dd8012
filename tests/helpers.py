"""Test doubles shared across the suite."""

import json
from typing import Any, List, Sequence

from aura.contracts import Message, TokenUsage, ToolCall
from aura.reasoning import Completion

USAGE = TokenUsage(input_tokens=10, output_tokens=5, total_tokens=15)


def plan_json(*titles: str, summary: str = "Do the work") -> str:
    return json.dumps(
        {
            "summary": summary,
            "steps": [{"title": t, "description": f"{t} in detail"} for t in titles],
        }
    )


def tool_calls(*calls: tuple) -> Completion:
    """Completion requesting ``(name, args)`` tool calls."""
    return Completion(
        content="",
        tool_calls=[
            ToolCall(id=f"call-{i}", name=name, args=args)
            for i, (name, args) in enumerate(calls)
        ],
        token_usage=USAGE,
    )


class ScriptedReasoningEngine:
    """Reasoning engine replaying a fixed list of responses.

    Items may be strings (plain completions), ``Completion`` objects or
    exceptions to raise. Running out of responses fails the test.
    """

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        self.responses: List[Any] = list(responses)
        self.calls: List[tuple] = []

    def _next(self, kind: str, messages: Sequence[Message], tools: Sequence[Any]) -> Completion:
        self.calls.append((kind, list(messages), [t.name for t in tools]))
        if not self.responses:
            raise AssertionError(f"unexpected reasoning call: {kind}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, Completion):
            return item
        return Completion(content=item, token_usage=USAGE)

    async def complete(self, messages):
        return self._next("complete", messages, [])

    async def complete_with_tools(self, messages, tools):
        return self._next("complete_with_tools", messages, tools)


