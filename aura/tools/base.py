"""Tool abstraction used by the executing phase."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Type, Union

from pydantic import BaseModel, Field, ValidationError

from ..contracts import WaitingFor
from ..errors import ToolExecutionError

logger = logging.getLogger(__name__)


class HumanInputRequest(BaseModel):
    """Returned by a tool that needs a person to answer before work continues."""

    kind: WaitingFor
    prompt: str
    options: List[str] = Field(default_factory=list)

    def __str__(self) -> str:
        label = "question" if self.kind == "answer" else "approval"
        return f"Waiting for {label}: {self.prompt}"


class Tool(Protocol):
    """A named capability the reasoning engine may call."""

    name: str
    description: str

    @property
    def input_schema(self) -> Dict[str, Any]:
        """JSON schema of the tool arguments."""

    async def invoke(self, input: Dict[str, Any]) -> Any:
        """Run the tool. May raise."""


ToolFunc = Callable[..., Union[Any, Awaitable[Any]]]


class FunctionTool:
    """Expose a plain function as a tool.

    Arguments are validated against ``input_model`` and passed to ``func`` as
    keyword arguments. ``func`` may be synchronous or a coroutine function.
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: ToolFunc,
        input_model: Type[BaseModel],
    ) -> None:
        self.name = name
        self.description = description
        self._func = func
        self._input_model = input_model

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self._input_model.model_json_schema()

    async def invoke(self, input: Optional[Dict[str, Any]] = None) -> Any:
        try:
            args = self._input_model.model_validate(input or {})
        except ValidationError as e:
            raise ToolExecutionError(self.name, f"invalid arguments: {e}") from e
        kwargs = {field: getattr(args, field) for field in type(args).model_fields}
        result = self._func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"FunctionTool(name={self.name!r})"
