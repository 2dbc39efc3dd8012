from .base import Completion, ReasoningEngine
from .pydantic_ai_engine import PydanticAIReasoningEngine

__all__ = ["Completion", "ReasoningEngine", "PydanticAIReasoningEngine"]
