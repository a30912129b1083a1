"""
LLM factory for creating provider instances.

Supports: OpenAI, Anthropic Claude, OpenRouter.
"""

from ..config import LLMConfig, Settings
from ..errors import ConfigError
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - openai -> OpenAILLM (native OpenAI SDK)
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider

    if provider in ("openai", "openrouter"):
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.resolved_base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            json_mode=config.json_mode,
            stream=config.stream,
            organization=config.organization,
            timeout=config.timeout,
        )
    elif provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            json_mode=config.json_mode,
            stream=config.stream,
            timeout=config.timeout,
        )
    else:
        raise ConfigError(f"Unknown LLM provider: {provider}")
