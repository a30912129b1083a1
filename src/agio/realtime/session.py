"""
Realtime session state machine.

States:
    DISCONNECTED -> CONNECTING -> CONNECTED <-> STREAMING
    CONNECTED | STREAMING -> CLOSING -> CLOSED

A session owns its conversation from connect until close; while it does, a
turn-based Agent run on the same conversation fails with ConversationBusy.
Inbound events are pulled by the caller through ``events()``.
"""

import inspect
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Union
from urllib.parse import urlencode

import structlog

from ..agent.conversation import ConversationState
from ..agent.ownership import ConversationLocks, OwnershipLease, get_conversation_locks
from ..config import DEFAULT_BASE_URLS, LLMConfig
from ..errors import AgentError, AgioError, ConfigError, ParseError, RequestError
from .events import (
    ClientEvent,
    ConversationItemCreateEvent,
    ResponseDone,
    ResponseTextDone,
    ServerEvent,
    parse_server_event,
)
from .transport import RealtimeTransport, WebSocketTransport

logger = structlog.get_logger()


class RealtimeState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


_VALID_TRANSITIONS: dict[RealtimeState, set[RealtimeState]] = {
    RealtimeState.DISCONNECTED: {RealtimeState.CONNECTING, RealtimeState.CLOSED},
    RealtimeState.CONNECTING: {RealtimeState.CONNECTED, RealtimeState.DISCONNECTED},
    RealtimeState.CONNECTED: {RealtimeState.STREAMING, RealtimeState.CLOSING},
    RealtimeState.STREAMING: {RealtimeState.CONNECTED, RealtimeState.CLOSING},
    RealtimeState.CLOSING: {RealtimeState.CLOSED},
    RealtimeState.CLOSED: set(),
}


@dataclass
class RealtimeDelivery:
    """One inbound envelope: a parsed event, or the error it failed with."""

    raw: str
    event: ServerEvent | None = None
    error: AgioError | None = None


@dataclass
class HandlerFailure:
    """An inbound envelope whose handling failed."""

    raw: str
    error: Exception
    event: ServerEvent | None = None


EventHandler = Callable[[ServerEvent], Union[None, Awaitable[None]]]


def realtime_url(base_url: str, model: str) -> str:
    """Turn an https API base into the realtime websocket endpoint."""
    ws_base = base_url.replace("https://", "wss://").replace("http://", "ws://").rstrip("/")
    return f"{ws_base}/realtime?{urlencode({'model': model})}"


class RealtimeSession:
    """Duplex event session bound to one conversation."""

    def __init__(
        self,
        config: LLMConfig,
        conversation: ConversationState,
        transport: RealtimeTransport | None = None,
        locks: ConversationLocks | None = None,
    ):
        self.config = config
        self.conversation = conversation
        self.transport = transport or WebSocketTransport(open_timeout=config.timeout)
        self.locks = locks or get_conversation_locks()
        self.owner = f"realtime-{uuid.uuid4().hex[:8]}"
        self._state = RealtimeState.DISCONNECTED
        self._lease: OwnershipLease | None = None
        self._answered: set[str | None] = set()

    @property
    def state(self) -> RealtimeState:
        return self._state

    def _transition(self, new_state: RealtimeState) -> None:
        if new_state not in _VALID_TRANSITIONS[self._state]:
            raise AgentError(f"Invalid realtime transition: {self._state.value} -> {new_state.value}")
        logger.debug("Realtime state", from_state=self._state.value, to_state=new_state.value)
        self._state = new_state

    async def connect(self, model: str | None = None) -> None:
        """Open the channel. The conversation lease is taken first."""
        if self._state != RealtimeState.DISCONNECTED:
            raise AgentError(f"Cannot connect from state {self._state.value}")
        if not self.config.api_key:
            raise ConfigError("API key not provided")

        model = model or self.config.model
        base_url = self.config.resolved_base_url or DEFAULT_BASE_URLS["openai"]
        url = realtime_url(base_url, model)
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        self._lease = self.locks.acquire(self.conversation.id, self.owner)
        self._transition(RealtimeState.CONNECTING)
        try:
            await self.transport.connect(url, headers)
        except Exception as e:
            self._lease.release()
            self._lease = None
            self._transition(RealtimeState.DISCONNECTED)
            logger.error("Realtime connection failed", model=model, error=str(e))
            if isinstance(e, RequestError):
                raise
            raise RequestError(f"Realtime connection failed: {e}") from e

        self._transition(RealtimeState.CONNECTED)
        logger.info("Realtime session connected", conversation_id=self.conversation.id, model=model)

    async def send_event(self, event: ClientEvent | dict[str, Any]) -> None:
        """Serialize and transmit a client event.

        A user message item is also appended to the conversation once sent.
        """
        if self._state not in (RealtimeState.CONNECTED, RealtimeState.STREAMING):
            raise AgentError(f"Cannot send in state {self._state.value}")

        if isinstance(event, dict):
            if event.get("type") == "conversation.item.create":
                event = ConversationItemCreateEvent.model_validate(event)
            else:
                event = ClientEvent.model_validate(event)

        await self.transport.send(event.to_json())
        logger.debug("Realtime event sent", event_type=event.type)

        if isinstance(event, ConversationItemCreateEvent):
            text = event.user_text
            if text is not None:
                self.conversation.add_user_message(text)

    def _apply(self, event: ServerEvent) -> None:
        if isinstance(event, ResponseTextDone):
            self.conversation.add_assistant_message(event.text)
            self._answered.add(event.response_id)
        elif isinstance(event, ResponseDone):
            if event.response_id not in self._answered and event.text:
                self.conversation.add_assistant_message(event.text)
            self._answered.discard(event.response_id)

    async def events(self) -> AsyncIterator[RealtimeDelivery]:
        """Yield inbound envelopes in arrival order until the channel closes.

        Unparseable payloads are yielded with ``error`` set and do not end
        the stream.
        """
        self._transition(RealtimeState.STREAMING)
        try:
            while True:
                try:
                    raw = await self.transport.recv()
                except RequestError:
                    await self.close()
                    raise
                if raw is None:
                    logger.info("Realtime channel closed by server", conversation_id=self.conversation.id)
                    await self.close()
                    return

                try:
                    event = parse_server_event(raw)
                except ParseError as e:
                    logger.warning("Unparseable realtime event", error=str(e))
                    yield RealtimeDelivery(raw=raw, error=e)
                    continue

                self._apply(event)
                yield RealtimeDelivery(raw=raw, event=event)
        finally:
            if self._state == RealtimeState.STREAMING:
                self._transition(RealtimeState.CONNECTED)

    async def process_events(self, handler: EventHandler) -> list[HandlerFailure]:
        """Feed every inbound event to ``handler`` until the channel closes.

        Handler exceptions are collected and returned; they never stop
        delivery of later events.
        """
        failures: list[HandlerFailure] = []
        async for delivery in self.events():
            if delivery.event is None:
                failures.append(HandlerFailure(raw=delivery.raw, error=delivery.error))
                continue
            try:
                result = handler(delivery.event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Realtime handler failed", event_type=delivery.event.type, error=str(e))
                failures.append(HandlerFailure(raw=delivery.raw, error=e, event=delivery.event))
        return failures

    async def close(self) -> None:
        """Close the channel and release the conversation. Idempotent."""
        if self._state in (RealtimeState.CLOSING, RealtimeState.CLOSED):
            return

        if self._state == RealtimeState.DISCONNECTED:
            self._transition(RealtimeState.CLOSED)
            return

        self._transition(RealtimeState.CLOSING)
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning("Error closing realtime transport", error=str(e))
        finally:
            if self._lease is not None:
                self._lease.release()
                self._lease = None
            self._state = RealtimeState.CLOSED
        logger.info("Realtime session closed", conversation_id=self.conversation.id)

    async def __aenter__(self) -> "RealtimeSession":
        if self._state == RealtimeState.DISCONNECTED:
            await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
