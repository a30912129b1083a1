"""
Tests for the agent manager.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from agio.agent.core import AgentConfig
from agio.agent.manager import AgentManager
from agio.agent.ownership import ConversationLocks
from agio.agent.retry import RetryPolicy
from agio.errors import ConversationBusy, ConversationNotFound
from agio.llm.base import LLMResponse
from agio.persistence import MemoryStore

from conftest import make_llm


def make_manager(budget, max_cached_agents=100, answers=("ok",) * 10) -> AgentManager:
    return AgentManager(
        llm_factory=lambda: make_llm(*[LLMResponse(content=a) for a in answers]),
        store=MemoryStore(),
        config=AgentConfig(retry=RetryPolicy(initial_delay=0.0)),
        max_cached_agents=max_cached_agents,
        token_budget=budget,
        locks=ConversationLocks(),
    )


@pytest.mark.asyncio
async def test_create_agent_is_saved_immediately(budget):
    """Test new conversations are listed right away."""
    manager = make_manager(budget)

    conversation_id = await manager.create_agent()

    listed = await manager.list_conversations()
    assert [m.id for m in listed] == [conversation_id]


@pytest.mark.asyncio
async def test_run_message(budget):
    """Test messages run through the cached agent."""
    manager = make_manager(budget, answers=("first", "second"))
    conversation_id = await manager.create_agent()

    assert await manager.run_message(conversation_id, "one") == "first"
    assert await manager.run_message(conversation_id, "two") == "second"

    stored = await manager.store.load_conversation(conversation_id)
    assert stored.message_count == 5


@pytest.mark.asyncio
async def test_get_agent_resumes_after_eviction(budget):
    """Test evicted agents are resumed from the store."""
    manager = make_manager(budget, max_cached_agents=2)
    first = await manager.create_agent()
    await manager.run_message(first, "remember this")
    second = await manager.create_agent()
    third = await manager.create_agent()

    assert manager.cached_ids() == [second, third]

    agent = await manager.get_agent(first)

    assert agent.conversation_id == first
    assert agent.conversation.history()[1].content == "remember this"
    assert manager.cached_ids() == [third, first]


@pytest.mark.asyncio
async def test_get_unknown_agent(budget):
    """Test unknown ids raise ConversationNotFound."""
    manager = make_manager(budget)

    with pytest.raises(ConversationNotFound):
        await manager.get_agent("missing")


@pytest.mark.asyncio
async def test_delete_agent(budget):
    """Test deleting drops both the cache entry and the stored copy."""
    manager = make_manager(budget)
    conversation_id = await manager.create_agent()

    await manager.delete_agent(conversation_id)

    assert manager.cached_ids() == []
    with pytest.raises(ConversationNotFound):
        await manager.get_agent(conversation_id)


@pytest.mark.asyncio
async def test_running_agent_survives_eviction(budget):
    """Test a busy agent stays cached so its finished turn is not overwritten."""
    started = asyncio.Event()
    gate = asyncio.Event()

    async def generate(history, tools=None):
        if history[-1].content == "one":
            started.set()
            await gate.wait()
        return LLMResponse(content=f"answer to {history[-1].content}")

    def llm_factory():
        llm = make_llm()
        llm.generate = AsyncMock(side_effect=generate)
        return llm

    manager = AgentManager(
        llm_factory=llm_factory,
        store=MemoryStore(),
        config=AgentConfig(retry=RetryPolicy(initial_delay=0.0)),
        max_cached_agents=1,
        token_budget=budget,
        locks=ConversationLocks(),
    )
    first = await manager.create_agent()
    running = await manager.get_agent(first)

    task = asyncio.create_task(manager.run_message(first, "one"))
    await started.wait()
    await manager.create_agent()

    assert first in manager.cached_ids()
    assert await manager.get_agent(first) is running

    gate.set()
    assert await task == "answer to one"
    assert await manager.run_message(first, "two") == "answer to two"

    stored = await manager.store.load_conversation(first)
    assert [m.content for m in stored.messages] == [
        "You are a helpful assistant.",
        "one",
        "answer to one",
        "two",
        "answer to two",
    ]


@pytest.mark.asyncio
async def test_resume_of_held_conversation_is_busy(budget):
    """Test an uncached id held by another owner is not resumed."""
    manager = make_manager(budget, max_cached_agents=1)
    first = await manager.create_agent()
    await manager.create_agent()
    assert first not in manager.cached_ids()

    lease = manager.locks.acquire(first, "realtime-elsewhere")
    with pytest.raises(ConversationBusy):
        await manager.get_agent(first)
    lease.release()

    assert (await manager.get_agent(first)).conversation_id == first


@pytest.mark.asyncio
async def test_concurrent_resumes_share_one_agent(budget):
    """Test parallel lookups of an evicted id build a single agent."""
    manager = make_manager(budget, max_cached_agents=1)
    first = await manager.create_agent()
    await manager.create_agent()

    agents = await asyncio.gather(*(manager.get_agent(first) for _ in range(3)))

    assert all(agent is agents[0] for agent in agents)
