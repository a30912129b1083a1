"""
Exception hierarchy for agio.

All library errors inherit from AgioError so callers can catch broad or
specific failures as needed. Provider SDK exceptions are translated into
these classes at the LLM adapter boundary.
"""


class AgioError(Exception):
    """Base exception for all agio errors."""


class RequestError(AgioError):
    """Raised when the model service or transport fails.

    ``transient`` marks failures worth retrying (timeouts, connection resets,
    5xx responses, rate limiting).
    """

    def __init__(self, message: str, *, transient: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class ToolError(AgioError):
    """Raised when a tool fails or a tool result cannot be attached."""


class ConfigError(AgioError):
    """Raised for invalid setup (unknown model, missing API key)."""


class ParseError(AgioError):
    """Raised when a response does not have the expected shape."""


class AgentError(AgioError):
    """Raised for orchestration-level failures."""


class TurnLimitExceeded(AgentError):
    """Raised when the tool loop runs past the configured turn limit."""

    def __init__(self, max_turns: int):
        super().__init__(f"Agent exceeded maximum turns ({max_turns})")
        self.max_turns = max_turns


class ConversationBusy(AgentError):
    """Raised when another owner already holds a conversation."""

    def __init__(self, conversation_id: str, owner: str):
        super().__init__(f"Conversation {conversation_id} is owned by {owner}")
        self.conversation_id = conversation_id
        self.owner = owner


class PersistenceError(AgioError):
    """Raised when a persistence backend fails."""


class ConversationNotFound(PersistenceError):
    """Raised when loading a conversation id that does not exist."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id
