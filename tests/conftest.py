"""
Shared fixtures for agio tests.
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from agio.agent.budget import TokenBudget
from agio.agent.ownership import ConversationLocks
from agio.llm.base import LLMResponse


class CharEncoding:
    """One token per character."""

    def encode(self, text: str, **kwargs: Any) -> list[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: list[int]) -> str:
        return "".join(chr(t) for t in tokens)


class ByteEncoding:
    """One token per UTF-8 byte, so a cut can split a character."""

    def encode(self, text: str, **kwargs: Any) -> list[int]:
        return list(text.encode("utf-8"))

    def decode(self, tokens: list[int]) -> str:
        return bytes(tokens).decode("utf-8", errors="replace")


def char_encoding_loader(model: str) -> CharEncoding:
    if model.startswith("unknown"):
        raise KeyError(model)
    return CharEncoding()


class FakeTransport:
    """In-memory RealtimeTransport fed from a list of inbound payloads."""

    def __init__(self, inbound: list[str] | None = None, fail_connect: Exception | None = None):
        self.inbound = list(inbound or [])
        self.fail_connect = fail_connect
        self.sent: list[str] = []
        self.url: str | None = None
        self.headers: dict[str, str] | None = None
        self.closed = False

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        if self.fail_connect is not None:
            raise self.fail_connect
        self.url = url
        self.headers = headers

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def recv(self) -> str | None:
        if not self.inbound:
            return None
        return self.inbound.pop(0)

    async def close(self) -> None:
        self.closed = True


def make_llm(*responses: LLMResponse | Exception, model: str = "gpt-4o") -> MagicMock:
    """Mock LLM whose generate() returns (or raises) the given items in order."""
    llm = MagicMock()
    llm.model = model
    llm.api_key = "sk-test"
    llm.base_url = None
    llm.provider_name = "openai"
    llm.generate = AsyncMock(side_effect=list(responses))
    return llm


@pytest.fixture
def char_encoding() -> CharEncoding:
    return CharEncoding()


@pytest.fixture
def budget() -> TokenBudget:
    return TokenBudget(encoding_loader=char_encoding_loader)


@pytest.fixture
def locks() -> ConversationLocks:
    return ConversationLocks()
