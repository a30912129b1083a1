"""
LLM module for model provider support.

Providers:
- OpenAI GPT (native SDK)
- Anthropic Claude (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import BaseLLM, LLMMessage, LLMResponse, Role, ToolCall, ToolDefinition
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "Role",
    "ToolCall",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
