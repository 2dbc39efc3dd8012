"""Reasoning engine abstraction."""

from __future__ import annotations

from typing import List, Protocol, Sequence

from pydantic import BaseModel, Field

from ..contracts import Message, TokenUsage, ToolCall
from ..tools.base import Tool


class Completion(BaseModel):
    """Single response from the reasoning engine."""

    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


class ReasoningEngine(Protocol):
    """Language model behind the planning, executing and reviewing phases.

    Implementations must always report ``token_usage`` (zeros when the
    provider does not expose it) and raise ``ReasoningError`` on failure.
    """

    async def complete(self, messages: Sequence[Message]) -> Completion:
        """Return a plain text completion."""

    async def complete_with_tools(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> Completion:
        """Return a completion that may request tool calls."""
