"""
Anthropic Claude LLM provider.
"""

from typing import Any, AsyncIterator

import anthropic
import structlog

from ..errors import ConfigError, ParseError, RequestError
from .base import BaseLLM, LLMMessage, LLMResponse, Role, ToolCall, ToolDefinition

logger = structlog.get_logger()

_TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


def translate_error(error: anthropic.APIError) -> RequestError:
    """Map an Anthropic SDK exception onto a RequestError."""
    status_code = getattr(error, "status_code", None)
    transient = isinstance(error, _TRANSIENT_ERRORS) or (
        status_code is not None and status_code >= 500
    )
    return RequestError(str(error), transient=transient, status_code=status_code)


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        json_mode: bool = False,
        stream: bool = False,
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ConfigError("API key not provided")
        super().__init__(api_key, model, base_url, max_tokens, temperature, json_mode, stream)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Anthropic format.

        Consecutive tool results are folded into one user turn, which is
        what the Messages API expects after a multi-call assistant turn.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                continue

            if msg.role == Role.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg.role == Role.ASSISTANT and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({
                    "role": msg.role.value,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _extract_system_prompt(self, messages: list[LLMMessage]) -> str | None:
        """Join system messages into the top-level system prompt."""
        parts = [msg.content for msg in messages if msg.role == Role.SYSTEM]
        if self.json_mode:
            parts.append("Respond with a single JSON object and nothing else.")
        return "\n\n".join(parts) if parts else None

    def _build_kwargs(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(messages),
        }

        system = self._extract_system_prompt(messages)
        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        return kwargs

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Generate a response from Claude."""
        kwargs = self._build_kwargs(messages, tools)

        try:
            if self.stream_responses:
                async with self.client.messages.stream(**kwargs) as stream:
                    response = await stream.get_final_message()
            else:
                response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise translate_error(e) from e

        content = ""
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                if not isinstance(block.input, dict):
                    raise ParseError(f"Arguments for tool '{block.name}' must be an object")
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=dict(block.input),
                ))

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            stop_reason=response.stop_reason,
            raw_response=response,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[str]:
        """Stream a response from Claude."""
        kwargs = self._build_kwargs(messages, tools)

        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield text

        except anthropic.APIError as e:
            logger.error("Anthropic streaming error", error=str(e))
            raise translate_error(e) from e
