"""
OpenAI chat completions provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any, AsyncIterator

import openai
import structlog

from ..errors import ConfigError, ParseError, RequestError
from .base import BaseLLM, LLMMessage, LLMResponse, Role, ToolCall, ToolDefinition

logger = structlog.get_logger()

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def translate_error(error: openai.APIError) -> RequestError:
    """Map an OpenAI SDK exception onto a RequestError."""
    status_code = getattr(error, "status_code", None)
    if isinstance(error, _TRANSIENT_ERRORS):
        return RequestError(str(error), transient=True, status_code=status_code)
    if isinstance(error, openai.APIStatusError) and status_code is not None and status_code >= 500:
        return RequestError(str(error), transient=True, status_code=status_code)
    return RequestError(str(error), transient=False, status_code=status_code)


def parse_arguments(raw: str | None, tool_name: str) -> dict[str, Any]:
    """Decode a JSON argument string emitted by the model."""
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"Failed to parse arguments for tool '{tool_name}': {e}") from e
    if not isinstance(arguments, dict):
        raise ParseError(f"Arguments for tool '{tool_name}' must be a JSON object")
    return arguments


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        json_mode: bool = False,
        stream: bool = False,
        organization: str | None = None,
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ConfigError("API key not provided")
        super().__init__(api_key, model, base_url, max_tokens, temperature, json_mode, stream)
        # Retries are owned by the agent loop, not the SDK.
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == Role.TOOL:
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == Role.ASSISTANT and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": tool_calls,
                })
            else:
                converted.append({
                    "role": msg.role.value,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        converted = []
        for tool in tools:
            function: dict[str, Any] = {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            }
            if tool.strict:
                function["strict"] = True
            converted.append({"type": "function", "function": function})
        return converted

    def _build_kwargs(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
        stream: bool,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(messages),
        }
        if tools:
            kwargs["tools"] = self._convert_tools(tools)
        if self.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if stream:
            kwargs["stream"] = True
        return kwargs

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Generate a response from GPT."""
        if self.stream_responses:
            return await self._generate_streamed(messages, tools)

        kwargs = self._build_kwargs(messages, tools, stream=False)

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise translate_error(e) from e

        if not response.choices:
            raise ParseError("No response choices received")

        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_arguments(tc.function.arguments, tc.function.name),
            )
            for tc in message.tool_calls or []
        ]

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )

    async def _generate_streamed(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
    ) -> LLMResponse:
        """Consume a streamed completion and reassemble content and tool calls."""
        kwargs = self._build_kwargs(messages, tools, stream=True)
        content_parts: list[str] = []
        partial_calls: dict[int, dict[str, str]] = {}
        stop_reason = None
        model = self.model

        try:
            stream = await self.client.chat.completions.create(**kwargs)
            async for chunk in stream:  # type: ignore
                model = chunk.model or model
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta.content:
                    content_parts.append(delta.content)
                for tc in delta.tool_calls or []:
                    slot = partial_calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name:
                        slot["name"] += tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["arguments"] += tc.function.arguments
                if choice.finish_reason:
                    stop_reason = choice.finish_reason
        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise translate_error(e) from e

        tool_calls = [
            ToolCall(
                id=slot["id"],
                name=slot["name"],
                arguments=parse_arguments(slot["arguments"], slot["name"]),
            )
            for _, slot in sorted(partial_calls.items())
        ]

        return LLMResponse(
            content="".join(content_parts),
            tool_calls=tool_calls,
            model=model,
            stop_reason=stop_reason,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[str]:
        """Stream a response from GPT."""
        kwargs = self._build_kwargs(messages, tools, stream=True)

        try:
            stream = await self.client.chat.completions.create(**kwargs)

            async for chunk in stream:  # type: ignore
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content

        except openai.APIError as e:
            logger.error("OpenAI streaming error", error=str(e))
            raise translate_error(e) from e
