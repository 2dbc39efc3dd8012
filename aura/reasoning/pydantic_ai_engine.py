"""Reasoning engine backed by pydantic-ai models."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from ..config import LLMConfig
from ..contracts import Message, TokenUsage, ToolCall
from ..errors import ReasoningError
from ..tools.base import Tool
from .base import Completion

logger = logging.getLogger(__name__)


def to_model_messages(messages: Sequence[Message]) -> List[ModelMessage]:
    """Convert workflow history into pydantic-ai request/response messages.

    Consecutive system, user and tool messages are grouped into a single
    ``ModelRequest``; each assistant message becomes a ``ModelResponse``.
    """

    result: List[ModelMessage] = []
    parts: List[ModelRequestPart] = []
    for message in messages:
        if message.role == "assistant":
            if parts:
                result.append(ModelRequest(parts=parts))
                parts = []
            response_parts: list = []
            if message.content:
                response_parts.append(TextPart(content=message.content))
            for call in message.tool_calls:
                response_parts.append(
                    ToolCallPart(tool_name=call.name, args=call.args, tool_call_id=call.id)
                )
            if not response_parts:
                response_parts.append(TextPart(content=""))
            result.append(ModelResponse(parts=response_parts))
        elif message.role == "system":
            parts.append(SystemPromptPart(content=message.content))
        elif message.role == "tool":
            parts.append(
                ToolReturnPart(
                    tool_name=message.name or "",
                    content=message.content,
                    tool_call_id=message.tool_call_id or "",
                )
            )
        else:
            parts.append(UserPromptPart(content=message.content))
    if parts:
        result.append(ModelRequest(parts=parts))
    return result


def to_tool_definitions(tools: Sequence[Tool]) -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name=tool.name,
            description=tool.description,
            parameters_json_schema=tool.input_schema,
        )
        for tool in tools
    ]


def _usage(response: ModelResponse) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    input_tokens = getattr(usage, "input_tokens", None)
    if input_tokens is None:
        input_tokens = getattr(usage, "request_tokens", None)
    output_tokens = getattr(usage, "output_tokens", None)
    if output_tokens is None:
        output_tokens = getattr(usage, "response_tokens", None)
    input_tokens = input_tokens or 0
    output_tokens = output_tokens or 0
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def from_model_response(response: ModelResponse) -> Completion:
    content: List[str] = []
    tool_calls: List[ToolCall] = []
    for part in response.parts:
        if isinstance(part, TextPart):
            content.append(part.content)
        elif isinstance(part, ToolCallPart):
            tool_calls.append(
                ToolCall(id=part.tool_call_id, name=part.tool_name, args=part.args_as_dict())
            )
    return Completion(
        content="".join(content), tool_calls=tool_calls, token_usage=_usage(response)
    )


class PydanticAIReasoningEngine:
    """Adapter exposing any pydantic-ai model as a :class:`ReasoningEngine`."""

    def __init__(
        self,
        model: Union[Model, str],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.model = model
        settings: ModelSettings = {}
        if temperature is not None:
            settings["temperature"] = temperature
        if max_tokens is not None:
            settings["max_tokens"] = max_tokens
        self._settings = settings or None

    @classmethod
    def from_config(cls, config: LLMConfig) -> "PydanticAIReasoningEngine":
        return cls(
            config.model, temperature=config.temperature, max_tokens=config.max_tokens
        )

    async def _request(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> Completion:
        params = ModelRequestParameters(function_tools=to_tool_definitions(tools))
        try:
            response = await model_request(
                self.model,
                to_model_messages(messages),
                model_settings=self._settings,
                model_request_parameters=params,
            )
        except Exception as e:
            logger.error(f"Model request failed: {e}")
            raise ReasoningError(str(e)) from e
        return from_model_response(response)

    async def complete(self, messages: Sequence[Message]) -> Completion:
        return await self._request(messages, [])

    async def complete_with_tools(
        self, messages: Sequence[Message], tools: Sequence[Tool]
    ) -> Completion:
        return await self._request(messages, tools)
