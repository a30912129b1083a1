"""
Base classes for tools.

Two tool variants share one interface (``name``, ``definition()``,
``execute(**kwargs)``):

- ``BaseTool`` subclasses for tools with their own state.
- ``Tool`` / ``FunctionTool`` wrappers built from a plain async function.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine

from pydantic import BaseModel, ValidationError

from ..llm.base import ToolDefinition


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None

    def to_content(self) -> str:
        """Render the result as tool-message content for the model."""
        return self.output if self.success else f"Error: {self.error}"


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    This is an alternative to the class-based BaseTool for simpler tools.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, ToolResult]]
    strict: bool = False

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop: dict[str, Any] = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        schema: dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "required": required,
        }
        if self.strict:
            schema["additionalProperties"] = False
        return schema

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
            strict=self.strict,
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        return await self.handler(**kwargs)


class FunctionTool:
    """Adapts a typed async function into a tool.

    The arguments are described by a pydantic model: its JSON schema becomes
    the tool's strict parameter schema, and incoming arguments are validated
    into an instance of it before the handler is called.
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: Callable[[Any], Awaitable[Any]],
        args_model: type[BaseModel],
    ):
        self.name = name
        self.description = description
        self.handler = handler
        self.args_model = args_model
        self._schema = self._build_schema()

    def _build_schema(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema["additionalProperties"] = False
        schema.setdefault("properties", {})
        # Strict mode requires every property to be listed as required.
        schema["required"] = list(schema["properties"])
        return schema

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self._schema,
            strict=True,
        )

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.args_model.model_validate(kwargs)
        except ValidationError as e:
            return ToolResult(success=False, error=f"Invalid arguments: {e}")

        result = self.handler(args)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, output=str(result), data=result)


def function_tool(
    name: str,
    description: str,
    handler: Callable[[Any], Awaitable[Any]],
    args_model: type[BaseModel],
) -> FunctionTool:
    """Build a tool from a name, description and typed handler."""
    return FunctionTool(name, description, handler, args_model)


class BaseTool(ABC):
    """Base class for all tools."""

    strict: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool with given arguments."""
        pass

    def definition(self) -> ToolDefinition:
        """Convert to a tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            strict=self.strict,
        )
