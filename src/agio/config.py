"""
Configuration management for agio

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["openai", "anthropic", "openrouter"]

DEFAULT_BASE_URLS: dict[str, str | None] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": None,
    "openrouter": "https://openrouter.ai/api/v1",
}


class LLMConfig(BaseSettings):
    """Configuration for a single model provider."""

    model_config = SettingsConfigDict(env_prefix="AGIO_LLM_", extra="ignore")

    provider: Provider = "openai"
    model: str = "gpt-4o"
    api_key: str = ""
    base_url: str | None = None
    organization: str | None = None
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    max_tokens: int = Field(default=1024, gt=0, description="Max output tokens per response")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    json_mode: bool = False
    stream: bool = False

    @property
    def resolved_base_url(self) -> str | None:
        """Base URL, falling back to the provider default."""
        return self.base_url or DEFAULT_BASE_URLS.get(self.provider)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AGIO_",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "agio"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    max_cached_agents: int = Field(default=100, gt=0, description="Agents kept in memory by the server")

    # Provider API keys
    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    openai_organization: str | None = None

    # Default model settings
    default_provider: Provider = "openai"
    default_model: str = "gpt-4o"
    max_tokens: int = Field(default=1024, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    request_timeout: float = Field(default=30.0, gt=0)
    json_mode: bool = False
    stream: bool = False

    # Agent loop
    system_prompt: str = "You are a helpful assistant."
    max_turns: int = Field(default=10, gt=0, description="Max model/tool cycles per run")
    max_context_tokens: int = Field(default=8000, gt=0, description="Token budget for submitted history")
    max_retries: int = Field(default=3, ge=0, description="Retries for transient request failures")
    retry_initial_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)
    auto_save: bool = True
    fallback_encoding: str | None = Field(
        default=None,
        description="tiktoken encoding for models tiktoken does not know",
    )

    # Persistence
    storage_backend: Literal["memory", "filesystem", "sql"] = "memory"
    storage_path: str = Field(default="./data/conversations", description="Directory for the filesystem store")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/agio.db",
        description="Database connection URL for the SQL store",
    )

    @field_validator("system_prompt", mode="before")
    @classmethod
    def strip_system_prompt(cls, v: str) -> str:
        return v.strip() if v else ""

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get model configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "openrouter": self.openrouter_api_key,
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=self.default_model,
            api_key=api_key_map.get(provider, ""),
            base_url=DEFAULT_BASE_URLS.get(provider),
            organization=self.openai_organization if provider == "openai" else None,
            timeout=self.request_timeout,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            json_mode=self.json_mode,
            stream=self.stream,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
