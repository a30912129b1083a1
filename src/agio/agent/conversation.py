"""
In-memory conversation state.

ConversationState is the authoritative ordered message log for one
conversation. It validates role invariants on append, keeps the derived
counters current, and converts to and from the Conversation record that the
persistence layer stores. It performs no I/O.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..errors import AgentError, ToolError
from ..llm.base import LLMMessage, Role, ToolCall


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Conversation:
    """Persistable snapshot of a conversation.

    Carries the model and system prompt alongside the messages so a session
    can be resumed without re-supplying its configuration.
    """

    id: str = ""
    messages: list[LLMMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    model: str = ""
    system_prompt: str | None = None
    token_count: int = 0
    name: str | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "message_count": self.message_count,
            "token_count": self.token_count,
            "model": self.model,
            "system_prompt": self.system_prompt,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            name=data.get("name"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            model=data.get("model") or "",
            system_prompt=data.get("system_prompt"),
            token_count=int(data.get("token_count") or 0),
            messages=[LLMMessage.from_dict(m) for m in data.get("messages", [])],
        )


# The persisted snapshot an agent resumes from.
AgentState = Conversation


class ConversationState:
    """Ordered, append-only message log for one conversation."""

    def __init__(
        self,
        conversation_id: str | None = None,
        model: str = "",
        system_prompt: str | None = None,
    ):
        self._id = conversation_id or ""
        self.model = model
        self.system_prompt = system_prompt
        self.name: str | None = None
        self._messages: list[LLMMessage] = []
        self._pending: dict[str, str] = {}
        self._token_count = 0
        self.created_at = utcnow()
        self.updated_at = self.created_at

        if system_prompt:
            self.append(LLMMessage(role=Role.SYSTEM, content=system_prompt))

    @property
    def id(self) -> str:
        return self._id

    def assign_id(self, conversation_id: str) -> None:
        """Set the conversation id once; it cannot change afterwards."""
        if self._id and self._id != conversation_id:
            raise AgentError(
                f"Conversation id is immutable (have {self._id}, got {conversation_id})"
            )
        self._id = conversation_id

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def pending_tool_calls(self) -> list[str]:
        """Ids of tool calls that have not received a result yet."""
        return list(self._pending)

    def append(self, message: LLMMessage) -> None:
        """Append a message after validating role-specific invariants.

        A tool message must answer a pending call emitted by an earlier
        assistant message. Rejected messages leave the state untouched.
        """
        if message.role == Role.TOOL:
            if not message.tool_call_id or message.tool_call_id not in self._pending:
                raise ToolError(
                    f"Tool result references unknown tool call id: {message.tool_call_id!r}"
                )
            del self._pending[message.tool_call_id]
        elif message.role == Role.ASSISTANT and message.tool_calls:
            for call in message.tool_calls:
                self._pending[call.id] = call.name

        self._messages.append(message)
        self.updated_at = utcnow()

    def add_user_message(self, content: str) -> None:
        """Add a user message."""
        self.append(LLMMessage(role=Role.USER, content=content))

    def add_assistant_message(
        self, content: str, tool_calls: list[ToolCall] | None = None
    ) -> None:
        """Add an assistant message."""
        self.append(LLMMessage(
            role=Role.ASSISTANT,
            content=content,
            tool_calls=tool_calls or None,
        ))

    def add_tool_result(self, tool_call_id: str, result: str, tool_name: str | None = None) -> None:
        """Add a tool result."""
        self.append(LLMMessage(
            role=Role.TOOL,
            content=result,
            tool_call_id=tool_call_id,
            name=tool_name,
        ))

    def record_usage(self, tokens: int) -> None:
        """Accumulate provider-reported token usage."""
        if tokens < 0:
            raise ValueError("token usage cannot be negative")
        self._token_count += tokens
        self.updated_at = utcnow()

    def history(self) -> list[LLMMessage]:
        """Ordered messages for submission to the model."""
        return list(self._messages)

    def snapshot(self) -> Conversation:
        """Deep copy of the current state as a persistable record."""
        return Conversation(
            id=self._id,
            messages=copy.deepcopy(self._messages),
            created_at=self.created_at,
            updated_at=self.updated_at,
            model=self.model,
            system_prompt=self.system_prompt,
            token_count=self._token_count,
            name=self.name,
        )

    def restore(self, conversation: Conversation) -> None:
        """Replace the state with a persisted snapshot."""
        if conversation.id:
            self.assign_id(conversation.id)
        self._messages = copy.deepcopy(conversation.messages)
        self.model = conversation.model or self.model
        self.system_prompt = conversation.system_prompt
        self.name = conversation.name
        self._token_count = conversation.token_count
        self.created_at = conversation.created_at
        self.updated_at = conversation.updated_at

        self._pending = {}
        for message in self._messages:
            if message.role == Role.ASSISTANT and message.tool_calls:
                for call in message.tool_calls:
                    self._pending[call.id] = call.name
            elif message.role == Role.TOOL and message.tool_call_id:
                self._pending.pop(message.tool_call_id, None)

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationState":
        state = cls(conversation_id=conversation.id or None, model=conversation.model)
        state.restore(conversation)
        return state
