"""
agio - orchestration for multi-turn, tool-using LLM conversations.
"""

__version__ = "0.1.0"

from .agent import Agent, AgentConfig, ConversationState, TokenBudget
from .config import Settings, get_settings
from .errors import AgioError
from .llm import create_llm
from .tools import ToolRegistry

__all__ = [
    "__version__",
    "Agent",
    "AgentConfig",
    "ConversationState",
    "TokenBudget",
    "Settings",
    "get_settings",
    "AgioError",
    "create_llm",
    "ToolRegistry",
]
