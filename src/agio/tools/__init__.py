"""
Tools module for agent capabilities.
"""

from .base import BaseTool, FunctionTool, Tool, ToolParameter, ToolResult, function_tool
from .registry import RegisteredTool, ToolRegistry

__all__ = [
    "BaseTool",
    "FunctionTool",
    "Tool",
    "ToolParameter",
    "ToolResult",
    "function_tool",
    "RegisteredTool",
    "ToolRegistry",
]
