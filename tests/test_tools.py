"""
Tests for tools module.
"""

import asyncio
from typing import Any

import pytest
from pydantic import BaseModel

from agio.llm.base import ToolCall
from agio.tools import BaseTool, FunctionTool, Tool, ToolParameter, ToolRegistry, ToolResult


class EchoArgs(BaseModel):
    text: str
    repeat: int = 1


async def echo(args: EchoArgs) -> str:
    return args.text * args.repeat


class UpperTool(BaseTool):
    @property
    def name(self) -> str:
        return "upper"

    @property
    def description(self) -> str:
        return "Uppercase a string"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        }

    async def execute(self, text: str) -> ToolResult:
        return ToolResult(success=True, output=text.upper())


def test_tool_result_content():
    """Test success and failure rendering."""
    assert ToolResult(success=True, output="ok").to_content() == "ok"
    assert ToolResult(success=False, error="boom").to_content() == "Error: boom"


def test_simple_tool_schema():
    """Test parameter list conversion to JSON Schema."""
    async def handler(city: str, units: str = "metric") -> ToolResult:
        return ToolResult(success=True, output=city)

    tool = Tool(
        name="weather",
        description="Get the weather",
        parameters=[
            ToolParameter(name="city", param_type="string", description="City"),
            ToolParameter(
                name="units",
                param_type="string",
                description="Units",
                required=False,
                enum=["metric", "imperial"],
            ),
        ],
        handler=handler,
        strict=True,
    )

    schema = tool.definition().parameters
    assert schema["required"] == ["city"]
    assert schema["properties"]["units"]["enum"] == ["metric", "imperial"]
    assert schema["additionalProperties"] is False


def test_function_tool_strict_schema():
    """Test pydantic argument models produce strict schemas."""
    tool = FunctionTool("echo", "Echo text", echo, EchoArgs)
    definition = tool.definition()

    assert definition.strict is True
    assert definition.parameters["additionalProperties"] is False
    assert set(definition.parameters["required"]) == {"text", "repeat"}
    assert "title" not in definition.parameters


@pytest.mark.asyncio
async def test_function_tool_validates_arguments():
    """Test invalid arguments become an error result."""
    tool = FunctionTool("echo", "Echo text", echo, EchoArgs)

    ok = await tool.execute(text="ab", repeat=2)
    bad = await tool.execute(repeat="many")

    assert ok.success is True
    assert ok.output == "abab"
    assert bad.success is False
    assert "Invalid arguments" in bad.error


def test_registry_last_registration_wins():
    """Test re-registering a name replaces the earlier tool."""
    registry = ToolRegistry()
    registry.register_fn("echo", "first", echo, EchoArgs)
    registry.register_fn("echo", "second", echo, EchoArgs)

    assert len(registry) == 1
    assert registry.get("echo").description == "second"


def test_registry_definitions():
    """Test definitions cover every registered tool."""
    registry = ToolRegistry()
    registry.register(UpperTool())
    registry.register_fn("echo", "Echo text", echo, EchoArgs)

    names = [d.name for d in registry.get_definitions()]
    assert names == ["upper", "echo"]

    registry.unregister("upper")
    assert registry.list_tools() == ["echo"]


@pytest.mark.asyncio
async def test_execute_unknown_tool():
    """Test an unknown tool yields an error result instead of raising."""
    registry = ToolRegistry()

    result = await registry.execute("missing", {})

    assert result.success is False
    assert result.error == "Tool 'missing' not found"


@pytest.mark.asyncio
async def test_execute_catches_tool_exceptions():
    """Test a raising handler becomes an error result."""
    async def explode(args: EchoArgs) -> str:
        raise RuntimeError("kaboom")

    registry = ToolRegistry()
    registry.register_fn("explode", "Always fails", explode, EchoArgs)

    result = await registry.execute("explode", {"text": "x", "repeat": 1})

    assert result.success is False
    assert "kaboom" in result.error


@pytest.mark.asyncio
async def test_execute_all_preserves_call_order():
    """Test results follow call order even when completion order differs."""
    class DelayArgs(BaseModel):
        label: str
        delay: float

    async def delayed(args: DelayArgs) -> str:
        await asyncio.sleep(args.delay)
        return f"done:{args.label}"

    registry = ToolRegistry()
    registry.register_fn("delayed", "Sleep then answer", delayed, DelayArgs)

    calls = [
        ToolCall(id="1", name="delayed", arguments={"label": "slow", "delay": 0.05}),
        ToolCall(id="2", name="delayed", arguments={"label": "fast", "delay": 0.0}),
    ]
    results = await registry.execute_all(calls)

    assert [r.output for r in results] == ["done:slow", "done:fast"]


@pytest.mark.asyncio
async def test_execute_all_runs_concurrently():
    """Test calls within one batch overlap in time."""
    started = asyncio.Event()
    release = asyncio.Event()

    class WaitArgs(BaseModel):
        role: str

    async def rendezvous(args: WaitArgs) -> str:
        if args.role == "waiter":
            started.set()
            await release.wait()
        else:
            await started.wait()
            release.set()
        return args.role

    registry = ToolRegistry()
    registry.register_fn("rendezvous", "Meet the other call", rendezvous, WaitArgs)

    results = await asyncio.wait_for(
        registry.execute_all([
            ToolCall(id="a", name="rendezvous", arguments={"role": "waiter"}),
            ToolCall(id="b", name="rendezvous", arguments={"role": "releaser"}),
        ]),
        timeout=1.0,
    )

    assert [r.output for r in results] == ["waiter", "releaser"]


@pytest.mark.asyncio
async def test_execute_all_isolates_failures():
    """Test one failing call does not affect its siblings."""
    registry = ToolRegistry()
    registry.register(UpperTool())

    results = await registry.execute_all([
        ToolCall(id="1", name="upper", arguments={"text": "a"}),
        ToolCall(id="2", name="nope", arguments={}),
        ToolCall(id="3", name="upper", arguments={"text": "b"}),
    ])

    assert [r.success for r in results] == [True, False, True]
    assert results[0].output == "A"
    assert results[2].output == "B"
