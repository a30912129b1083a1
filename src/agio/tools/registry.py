"""
Tool registry for managing available tools.
"""

import asyncio
from typing import Any, Awaitable, Callable, Union

import structlog
from pydantic import BaseModel

from ..llm.base import ToolCall, ToolDefinition
from .base import BaseTool, FunctionTool, Tool, ToolResult

logger = structlog.get_logger()

RegisteredTool = Union[BaseTool, Tool, FunctionTool]


class ToolRegistry:
    """Registry for managing tools.

    Tool names are unique; registering a name that already exists replaces
    the earlier tool (last registration wins).
    """

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, tool: RegisteredTool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            logger.warning("Tool replaced", tool_name=tool.name)
        self._tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name)

    def register_fn(
        self,
        name: str,
        description: str,
        handler: Callable[[Any], Awaitable[Any]],
        args_model: type[BaseModel],
    ) -> "ToolRegistry":
        """Register a typed function as a tool."""
        self.register(FunctionTool(name, description, handler, args_model))
        return self

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> RegisteredTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def is_empty(self) -> bool:
        return not self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        return [tool.definition() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name. Failures come back as error results."""
        tool = self.get(name)
        if tool is None:
            return ToolResult(
                success=False,
                output="",
                error=f"Tool '{name}' not found",
            )

        try:
            logger.info("Executing tool", tool_name=name, arguments=arguments)
            result = await tool.execute(**arguments)
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                output="",
                error=str(e),
            )

    async def execute_all(self, tool_calls: list[ToolCall]) -> list[ToolResult]:
        """Execute tool calls concurrently.

        Returns one result per call in the original call order, regardless
        of completion order. A failing call never affects its siblings.
        """
        if not tool_calls:
            return []
        return list(await asyncio.gather(
            *(self.execute(call.name, call.arguments) for call in tool_calls)
        ))
