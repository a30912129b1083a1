"""
Realtime protocol envelopes.

Both directions use a ``{"type": ..., ...}`` JSON envelope. Client events are
open (any type can be sent through ClientEvent); server events form a closed
set discriminated on ``type``, and anything outside it is a ParseError.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import ParseError


# Client -> server

class ClientEvent(BaseModel):
    """Generic client envelope; extra fields are sent as-is."""

    model_config = ConfigDict(extra="allow")

    type: str
    event_id: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class SessionUpdateEvent(ClientEvent):
    type: Literal["session.update"] = "session.update"
    session: dict[str, Any] = Field(default_factory=dict)


class ConversationItemCreateEvent(ClientEvent):
    type: Literal["conversation.item.create"] = "conversation.item.create"
    item: dict[str, Any]
    previous_item_id: str | None = None

    @property
    def user_text(self) -> str | None:
        """Text of a user message item, or None for other items."""
        if self.item.get("type") != "message" or self.item.get("role") != "user":
            return None
        parts = self.item.get("content") or []
        return "".join(
            part.get("text", "")
            for part in parts
            if isinstance(part, dict) and part.get("type") in ("input_text", "text")
        )


class ResponseCreateEvent(ClientEvent):
    type: Literal["response.create"] = "response.create"
    response: dict[str, Any] | None = None


def user_message_event(text: str) -> ConversationItemCreateEvent:
    """Build the event that adds a user text message to the conversation."""
    return ConversationItemCreateEvent(
        item={
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        }
    )


def session_update_event(**config: Any) -> SessionUpdateEvent:
    """Build a session.update event, e.g. ``session_update_event(instructions=...)``."""
    return SessionUpdateEvent(session=config)


# Server -> client

class _ServerEventBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_id: str | None = None


class SessionCreated(_ServerEventBase):
    type: Literal["session.created"]
    session: dict[str, Any] = Field(default_factory=dict)


class SessionUpdated(_ServerEventBase):
    type: Literal["session.updated"]
    session: dict[str, Any] = Field(default_factory=dict)


class ConversationItemCreated(_ServerEventBase):
    type: Literal["conversation.item.created"]
    item: dict[str, Any] = Field(default_factory=dict)
    previous_item_id: str | None = None


class ResponseTextDelta(_ServerEventBase):
    type: Literal["response.text.delta"]
    response_id: str | None = None
    item_id: str | None = None
    delta: str


class ResponseTextDone(_ServerEventBase):
    type: Literal["response.text.done"]
    response_id: str | None = None
    item_id: str | None = None
    text: str


class ResponseDone(_ServerEventBase):
    type: Literal["response.done"]
    response: dict[str, Any] = Field(default_factory=dict)

    @property
    def response_id(self) -> str | None:
        return self.response.get("id")

    @property
    def text(self) -> str:
        """Concatenated text parts of the response output items."""
        chunks = []
        for item in self.response.get("output") or []:
            for part in item.get("content") or []:
                if part.get("type") == "text" and part.get("text"):
                    chunks.append(part["text"])
        return "".join(chunks)


class ErrorEvent(_ServerEventBase):
    type: Literal["error"]
    error: dict[str, Any] = Field(default_factory=dict)

    @property
    def message(self) -> str:
        return str(self.error.get("message", ""))


ServerEvent = Annotated[
    Union[
        SessionCreated,
        SessionUpdated,
        ConversationItemCreated,
        ResponseTextDelta,
        ResponseTextDone,
        ResponseDone,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_server_event_adapter: TypeAdapter[ServerEvent] = TypeAdapter(ServerEvent)


def parse_server_event(payload: str | bytes) -> ServerEvent:
    """Parse one inbound envelope. Raises ParseError on anything unexpected."""
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise ParseError(f"Malformed server event: {e}") from e

    if not isinstance(data, dict):
        raise ParseError("Server event must be a JSON object")

    try:
        return _server_event_adapter.validate_python(data)
    except ValidationError as e:
        raise ParseError(f"Unrecognized server event {data.get('type')!r}: {e}") from e
