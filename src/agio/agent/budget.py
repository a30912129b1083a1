"""
Token budget - model-specific token counting and history fitting.

Counts tokens with the tokenizer the target model actually uses (tiktoken),
truncates text to a token ceiling, and trims conversation history to fit a
context budget before each model request.

History policy: the system message is always kept and the oldest
non-system messages are dropped first (recency wins). An assistant message
that issued tool calls is dropped together with its tool results so the
surviving history never contains an orphaned tool result.
"""

import json
from typing import Any, Callable, Protocol

import structlog
import tiktoken

from ..errors import ConfigError
from ..llm.base import LLMMessage, Role

logger = structlog.get_logger()

# Role marker and separators each message costs on top of its content.
TOKENS_PER_MESSAGE = 4


class Encoding(Protocol):
    def encode(self, text: str, **kwargs: Any) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


def _tiktoken_loader(model: str) -> Encoding:
    return tiktoken.encoding_for_model(model)


class TokenBudget:
    """Counts and truncates text against a model's tokenizer.

    Args:
        encoding_loader: Returns the encoding for a model name. Must raise
            KeyError for models it does not know.
        fallback_encoding: Encoding name used for models the loader does not
            know. When unset, unknown models raise ConfigError.
    """

    def __init__(
        self,
        encoding_loader: Callable[[str], Encoding] | None = None,
        fallback_encoding: str | None = None,
    ):
        self._loader = encoding_loader or _tiktoken_loader
        self._fallback = fallback_encoding
        self._cache: dict[str, Encoding] = {}

    @property
    def fallback_encoding(self) -> str | None:
        return self._fallback

    def encoding_for(self, model: str) -> Encoding:
        """Resolve and cache the encoding for a model."""
        if model in self._cache:
            return self._cache[model]

        # OpenRouter-style ids carry a vendor prefix ("openai/gpt-4o").
        name = model.split("/", 1)[1] if "/" in model else model

        try:
            encoding = self._loader(name)
        except KeyError:
            if self._fallback is None:
                raise ConfigError(f"Unknown model for token counting: {model}") from None
            logger.debug("Using fallback encoding", model=model, encoding=self._fallback)
            encoding = tiktoken.get_encoding(self._fallback)

        self._cache[model] = encoding
        return encoding

    def _encode(self, text: str, model: str) -> list[int]:
        # Special-token text is counted as plain text rather than rejected.
        return self.encoding_for(model).encode(text, disallowed_special=())

    def count_tokens(self, text: str, model: str) -> int:
        """Count the tokens in ``text`` for ``model``."""
        return len(self._encode(text, model))

    def count_message_tokens(self, message: LLMMessage, model: str) -> int:
        """Count the tokens a message contributes to a request."""
        total = TOKENS_PER_MESSAGE + self.count_tokens(message.content, model)
        if message.name:
            total += self.count_tokens(message.name, model)
        for call in message.tool_calls or []:
            total += self.count_tokens(call.name, model)
            total += self.count_tokens(json.dumps(call.arguments), model)
        return total

    def count_history_tokens(self, messages: list[LLMMessage], model: str) -> int:
        return sum(self.count_message_tokens(m, model) for m in messages)

    def truncate_text_to_tokens(self, text: str, limit: int, model: str) -> str:
        """Return the longest token prefix of ``text`` with at most ``limit`` tokens.

        Already-compliant text is returned unchanged, so truncating the
        output again is a no-op.
        """
        if limit < 0:
            raise ValueError("limit must be non-negative")

        encoding = self.encoding_for(model)
        tokens = self._encode(text, model)
        if len(tokens) <= limit:
            return text

        # Decoding a cut inside a multi-byte character can produce text that
        # is not a prefix or re-encodes longer; back off until both hold.
        n = limit
        while n > 0:
            candidate = encoding.decode(tokens[:n])
            if text.startswith(candidate) and self.count_tokens(candidate, model) <= limit:
                return candidate
            n -= 1
        return ""

    def fit_history(
        self,
        messages: list[LLMMessage],
        max_tokens: int,
        model: str,
    ) -> list[LLMMessage]:
        """Drop the oldest non-system messages until the history fits."""
        if max_tokens < 0:
            raise ValueError("max_tokens must be non-negative")

        costs = [self.count_message_tokens(m, model) for m in messages]
        total = sum(costs)
        if total <= max_tokens:
            return list(messages)

        system_idx = [i for i, m in enumerate(messages) if m.role == Role.SYSTEM]
        groups = _group_turns(messages)

        keep = set(system_idx)
        remaining = total
        dropped = 0
        for group in groups:
            if remaining <= max_tokens:
                keep.update(group)
            else:
                remaining -= sum(costs[i] for i in group)
                dropped += len(group)

        fitted = [m for i, m in enumerate(messages) if i in keep]

        logger.info(
            "Trimmed history to token budget",
            original_tokens=total,
            fitted_tokens=remaining,
            max_tokens=max_tokens,
            dropped_messages=dropped,
        )
        if all(m.role == Role.SYSTEM for m in fitted):
            logger.warning("No conversation messages fit the token budget", max_tokens=max_tokens)

        return fitted


def _group_turns(messages: list[LLMMessage]) -> list[list[int]]:
    """Group non-system message indexes so tool results stay with their call."""
    groups: list[list[int]] = []
    for i, message in enumerate(messages):
        if message.role == Role.SYSTEM:
            continue
        if message.role == Role.TOOL and groups:
            groups[-1].append(i)
        else:
            groups.append([i])
    return groups


_default_budget = TokenBudget()


def count_tokens(text: str, model: str) -> int:
    return _default_budget.count_tokens(text, model)


def truncate_text_to_tokens(text: str, limit: int, model: str) -> str:
    return _default_budget.truncate_text_to_tokens(text, limit, model)


def fit_history(messages: list[LLMMessage], max_tokens: int, model: str) -> list[LLMMessage]:
    return _default_budget.fit_history(messages, max_tokens, model)
