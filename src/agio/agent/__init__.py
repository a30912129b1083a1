"""
Agent module - conversation orchestration.

Includes:
- Agent: Model/tool turn loop with retries, turn limit and auto-save
- ConversationState: In-memory conversation state
- TokenBudget: Model-specific token counting and history fitting
- ConversationLocks: Exclusive ownership of conversations
- AgentManager: Cached agents backed by a persistence store
"""

from .budget import TokenBudget, count_tokens, fit_history, truncate_text_to_tokens
from .conversation import AgentState, Conversation, ConversationState
from .core import Agent, AgentConfig, AgentStatus
from .manager import AgentManager
from .ownership import ConversationLocks, OwnershipLease, get_conversation_locks
from .retry import RetryPolicy, with_retries

__all__ = [
    "TokenBudget",
    "count_tokens",
    "fit_history",
    "truncate_text_to_tokens",
    "AgentState",
    "Conversation",
    "ConversationState",
    "Agent",
    "AgentConfig",
    "AgentStatus",
    "AgentManager",
    "ConversationLocks",
    "OwnershipLease",
    "get_conversation_locks",
    "RetryPolicy",
    "with_retries",
]
