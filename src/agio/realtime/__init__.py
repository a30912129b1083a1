"""
Realtime module - duplex event sessions over a persistent channel.
"""

from .events import (
    ClientEvent,
    ConversationItemCreated,
    ConversationItemCreateEvent,
    ErrorEvent,
    ResponseCreateEvent,
    ResponseDone,
    ResponseTextDelta,
    ResponseTextDone,
    ServerEvent,
    SessionCreated,
    SessionUpdated,
    SessionUpdateEvent,
    parse_server_event,
    session_update_event,
    user_message_event,
)
from .session import HandlerFailure, RealtimeDelivery, RealtimeSession, RealtimeState, realtime_url
from .transport import RealtimeTransport, WebSocketTransport

__all__ = [
    "ClientEvent",
    "ConversationItemCreated",
    "ConversationItemCreateEvent",
    "ErrorEvent",
    "ResponseCreateEvent",
    "ResponseDone",
    "ResponseTextDelta",
    "ResponseTextDone",
    "ServerEvent",
    "SessionCreated",
    "SessionUpdated",
    "SessionUpdateEvent",
    "parse_server_event",
    "session_update_event",
    "user_message_event",
    "HandlerFailure",
    "RealtimeDelivery",
    "RealtimeSession",
    "RealtimeState",
    "realtime_url",
    "RealtimeTransport",
    "WebSocketTransport",
]
