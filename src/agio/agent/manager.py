"""
Agent manager for serving many conversations.

Keeps recently used agents in memory and resumes the rest from the store.
Each conversation id maps to at most one in-memory agent: agents that hold
their ownership lease are never evicted, and resumes of one id are
serialised.
"""

import asyncio
from collections import OrderedDict
from typing import TYPE_CHECKING, Callable

import structlog

from ..errors import ConversationBusy
from ..llm import BaseLLM
from ..tools import ToolRegistry
from .budget import TokenBudget
from .core import Agent, AgentConfig
from .ownership import ConversationLocks, get_conversation_locks

if TYPE_CHECKING:
    from ..persistence.base import ConversationMetadata, PersistenceStore

logger = structlog.get_logger()


class AgentManager:
    """Creates, caches and resumes agents backed by one store."""

    def __init__(
        self,
        llm_factory: Callable[[], BaseLLM],
        store: "PersistenceStore",
        config: AgentConfig | None = None,
        max_cached_agents: int = 100,
        tools: ToolRegistry | None = None,
        token_budget: TokenBudget | None = None,
        locks: ConversationLocks | None = None,
    ):
        self.llm_factory = llm_factory
        self.store = store
        self.config = config or AgentConfig()
        self.max_cached_agents = max_cached_agents
        self.tools = tools
        self.token_budget = token_budget
        self.locks = locks or get_conversation_locks()
        self._agents: OrderedDict[str, Agent] = OrderedDict()
        self._loading: dict[str, asyncio.Lock] = {}

    def _cache(self, agent: Agent) -> None:
        self._agents[agent.conversation_id] = agent
        self._agents.move_to_end(agent.conversation_id)
        self._evict()

    def _evict(self) -> None:
        # Busy agents stay cached even past the limit
        idle = [cid for cid in self._agents if not self.locks.is_held(cid)]
        while len(self._agents) > self.max_cached_agents and idle:
            evicted = idle.pop(0)
            del self._agents[evicted]
            logger.debug("Agent evicted from cache", conversation_id=evicted)

    def _cached(self, conversation_id: str) -> Agent | None:
        agent = self._agents.get(conversation_id)
        if agent is not None:
            self._agents.move_to_end(conversation_id)
        return agent

    async def create_agent(self) -> str:
        """Create a new conversation and save it immediately."""
        agent = Agent(
            self.llm_factory(),
            config=self.config,
            tools=self.tools,
            store=self.store,
            token_budget=self.token_budget,
            locks=self.locks,
        )
        conversation_id = await agent.save()
        self._cache(agent)
        logger.info("Agent created", conversation_id=conversation_id)
        return conversation_id

    async def get_agent(self, conversation_id: str) -> Agent:
        """Return a cached agent or resume it from the store.

        Raises ConversationBusy when the id is held by an owner this manager
        does not cache, such as a realtime session on another agent.
        """
        agent = self._cached(conversation_id)
        if agent is not None:
            return agent

        lock = self._loading.setdefault(conversation_id, asyncio.Lock())
        try:
            async with lock:
                agent = self._cached(conversation_id)
                if agent is not None:
                    return agent

                owner = self.locks.owner_of(conversation_id)
                if owner is not None:
                    raise ConversationBusy(conversation_id, owner)

                agent = await Agent.resume(
                    conversation_id,
                    self.llm_factory(),
                    self.store,
                    config=self.config,
                    tools=self.tools,
                    token_budget=self.token_budget,
                    locks=self.locks,
                )
                self._cache(agent)
                return agent
        finally:
            if not lock.locked() and self._loading.get(conversation_id) is lock:
                del self._loading[conversation_id]

    async def run_message(self, conversation_id: str, text: str) -> str:
        agent = await self.get_agent(conversation_id)
        return await agent.run(text)

    async def delete_agent(self, conversation_id: str) -> None:
        self._agents.pop(conversation_id, None)
        await self.store.delete_conversation(conversation_id)
        logger.info("Agent deleted", conversation_id=conversation_id)

    async def list_conversations(self, limit: int = 10, offset: int = 0) -> list["ConversationMetadata"]:
        return await self.store.list_conversations(limit=limit, offset=offset)

    def cached_ids(self) -> list[str]:
        """Ids of cached agents, least recently used first."""
        return list(self._agents)
