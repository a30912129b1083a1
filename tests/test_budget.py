"""
Tests for token budget.
"""

import pytest
import tiktoken

from agio.agent.budget import TOKENS_PER_MESSAGE, TokenBudget
from agio.errors import ConfigError
from agio.llm.base import LLMMessage, Role, ToolCall


def test_count_tokens(budget):
    """Test counting uses the model's encoding."""
    assert budget.count_tokens("hello", "gpt-4o") == 5
    assert budget.count_tokens("", "gpt-4o") == 0


def test_vendor_prefix_is_stripped(char_encoding):
    """Test OpenRouter-style model ids resolve to the bare model name."""
    seen = []

    def loader(model):
        seen.append(model)
        return char_encoding

    budget = TokenBudget(encoding_loader=loader)
    budget.count_tokens("abc", "openai/gpt-4o")
    budget.count_tokens("abc", "openai/gpt-4o")

    # Cached after the first lookup
    assert seen == ["gpt-4o"]


def test_unknown_model_raises_config_error(budget):
    """Test unknown models are a configuration error."""
    with pytest.raises(ConfigError):
        budget.count_tokens("hello", "unknown-model")


def test_unknown_model_with_real_tiktoken():
    """Test tiktoken's own lookup failure maps to ConfigError."""
    budget = TokenBudget()
    with pytest.raises(ConfigError):
        budget.encoding_for("definitely-not-a-model-name")


def test_unknown_model_uses_fallback(monkeypatch, char_encoding):
    """Test a fallback encoding is used when configured."""
    monkeypatch.setattr(tiktoken, "get_encoding", lambda name: char_encoding)

    def loader(model):
        raise KeyError(model)

    budget = TokenBudget(
        encoding_loader=loader,
        fallback_encoding="cl100k_base",
    )

    assert budget.encoding_for("claude-sonnet-4") is char_encoding
    assert budget.count_tokens("abcd", "claude-sonnet-4") == 4


def test_truncate_respects_limit(budget):
    """Test truncation returns a prefix within the limit."""
    text = "The quick brown fox jumps over the lazy dog"

    truncated = budget.truncate_text_to_tokens(text, 9, "gpt-4o")

    assert truncated == "The quick"
    assert text.startswith(truncated)
    assert budget.count_tokens(truncated, "gpt-4o") <= 9


def test_truncate_is_idempotent(budget):
    """Test truncating already-compliant text is a no-op."""
    text = "The quick brown fox"

    once = budget.truncate_text_to_tokens(text, 7, "gpt-4o")
    twice = budget.truncate_text_to_tokens(once, 7, "gpt-4o")

    assert once == twice
    assert budget.truncate_text_to_tokens(text, 100, "gpt-4o") == text


def test_truncate_edge_limits(budget):
    """Test zero and negative limits."""
    assert budget.truncate_text_to_tokens("hello", 0, "gpt-4o") == ""

    with pytest.raises(ValueError):
        budget.truncate_text_to_tokens("hello", -1, "gpt-4o")


def test_count_message_tokens_includes_tool_calls(budget):
    """Test tool call names and arguments are counted."""
    plain = LLMMessage(role=Role.ASSISTANT, content="ok")
    with_call = LLMMessage(
        role=Role.ASSISTANT,
        content="ok",
        tool_calls=[ToolCall(id="1", name="calc", arguments={})],
    )

    assert budget.count_message_tokens(plain, "gpt-4o") == TOKENS_PER_MESSAGE + 2
    # "calc" + "{}"
    assert budget.count_message_tokens(with_call, "gpt-4o") == TOKENS_PER_MESSAGE + 2 + 4 + 2


def test_fit_history_returns_everything_when_it_fits(budget):
    """Test no trimming happens under budget."""
    messages = [
        LLMMessage(role=Role.SYSTEM, content="sys"),
        LLMMessage(role=Role.USER, content="hello"),
    ]

    assert budget.fit_history(messages, 1000, "gpt-4o") == messages


def test_fit_history_drops_oldest_and_keeps_system(budget):
    """Test the oldest turns go first and the system message stays."""
    messages = [
        LLMMessage(role=Role.SYSTEM, content="s" * 6),
        LLMMessage(role=Role.USER, content="a" * 16),
        LLMMessage(role=Role.ASSISTANT, content="b" * 16),
        LLMMessage(role=Role.USER, content="c" * 16),
    ]
    # Costs: 10, 20, 20, 20 -> budget of 50 fits system plus the last two
    fitted = budget.fit_history(messages, 50, "gpt-4o")

    assert [m.content[0] for m in fitted] == ["s", "b", "c"]
    assert budget.count_history_tokens(fitted, "gpt-4o") <= 50


def test_fit_history_drops_tool_results_with_their_call(budget):
    """Test a tool call and its results are dropped together."""
    messages = [
        LLMMessage(role=Role.USER, content="u" * 6),
        LLMMessage(role=Role.ASSISTANT, content="", tool_calls=[
            ToolCall(id="t1", name="ab", arguments={}),
        ]),
        LLMMessage(role=Role.TOOL, content="r" * 10, tool_call_id="t1"),
        LLMMessage(role=Role.USER, content="q" * 6),
    ]
    # Costs: 10, 8, 14, 10 -> dropping the first user message is not enough
    fitted = budget.fit_history(messages, 20, "gpt-4o")

    assert [m.role for m in fitted] == [Role.USER]
    assert fitted[0].content == "q" * 6
    assert not any(m.role == Role.TOOL for m in fitted)


def test_openrouter_model_uses_fallback(monkeypatch, char_encoding):
    """Test vendor-prefixed non-OpenAI models count through the fallback."""
    monkeypatch.setattr(tiktoken, "get_encoding", lambda name: char_encoding)

    def loader(model):
        raise KeyError(model)

    budget = TokenBudget(encoding_loader=loader, fallback_encoding="cl100k_base")

    assert budget.count_tokens("hi", "meta-llama/llama-3-70b-instruct") == 2


def test_truncate_never_splits_multibyte_characters():
    """Test cuts inside a multi-byte character back off to a clean prefix."""
    from conftest import ByteEncoding

    budget = TokenBudget(encoding_loader=lambda model: ByteEncoding())
    text = "naïve café ✓ done"
    total = budget.count_tokens(text, "gpt-4o")

    for limit in range(total + 1):
        truncated = budget.truncate_text_to_tokens(text, limit, "gpt-4o")

        assert "\ufffd" not in truncated
        assert text.startswith(truncated)
        assert budget.count_tokens(truncated, "gpt-4o") <= limit
        assert budget.truncate_text_to_tokens(truncated, limit, "gpt-4o") == truncated


def test_truncate_backs_off_inside_character():
    """Test a limit landing mid-character drops the whole character."""
    from conftest import ByteEncoding

    budget = TokenBudget(encoding_loader=lambda model: ByteEncoding())

    # "é" is two bytes and "✓" is three
    assert budget.truncate_text_to_tokens("aé", 2, "gpt-4o") == "a"
    assert budget.truncate_text_to_tokens("a✓b", 3, "gpt-4o") == "a"
    assert budget.truncate_text_to_tokens("a✓b", 4, "gpt-4o") == "a✓"
