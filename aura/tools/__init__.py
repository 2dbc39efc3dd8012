from .base import FunctionTool, HumanInputRequest, Tool
from .human import create_human_tools

__all__ = ["Tool", "FunctionTool", "HumanInputRequest", "create_human_tools"]
