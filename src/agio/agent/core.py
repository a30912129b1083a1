"""
Core agent implementation.

The Agent drives the tool-calling turn loop for one conversation:
1. Appends the user message to the ConversationState
2. Trims history to the token budget and requests a completion (with retries)
3. Executes any requested tool calls concurrently and appends their results
4. Repeats until a final answer, the turn limit, or a fatal error
5. Auto-saves the conversation through the configured PersistenceStore
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator

import structlog

from ..config import LLMConfig, Settings
from ..errors import AgentError, AgioError, ConfigError, ParseError, TurnLimitExceeded
from ..llm import BaseLLM, LLMResponse
from ..tools import ToolRegistry
from .budget import TokenBudget
from .conversation import Conversation, ConversationState
from .ownership import ConversationLocks, get_conversation_locks
from .retry import RetryPolicy, with_retries

if TYPE_CHECKING:
    from ..persistence.base import PersistenceStore
    from ..realtime.session import RealtimeSession
    from ..realtime.transport import RealtimeTransport

logger = structlog.get_logger()


@dataclass
class AgentConfig:
    """Per-agent settings.

    ``temperature``, ``max_output_tokens``, ``stream`` and ``json_mode`` are
    applied to the LLM when set; None keeps the LLM's own value.
    """

    model: str = ""
    system_prompt: str | None = "You are a helpful assistant."
    max_turns: int = 10
    max_context_tokens: int = 8000
    temperature: float | None = None
    max_output_tokens: int | None = None
    stream: bool | None = None
    json_mode: bool | None = None
    auto_save: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgentConfig":
        return cls(
            model=settings.default_model,
            system_prompt=settings.system_prompt or None,
            max_turns=settings.max_turns,
            max_context_tokens=settings.max_context_tokens,
            temperature=settings.temperature,
            max_output_tokens=settings.max_tokens,
            stream=settings.stream,
            json_mode=settings.json_mode,
            auto_save=settings.auto_save,
            retry=RetryPolicy(
                max_retries=settings.max_retries,
                initial_delay=settings.retry_initial_delay,
                max_delay=settings.retry_max_delay,
            ),
        )


class AgentStatus(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERROR = "error"


class Agent:
    """Runs the model/tool loop over a single conversation."""

    def __init__(
        self,
        llm: BaseLLM,
        config: AgentConfig | None = None,
        tools: ToolRegistry | None = None,
        store: "PersistenceStore | None" = None,
        conversation_id: str | None = None,
        token_budget: TokenBudget | None = None,
        locks: ConversationLocks | None = None,
    ):
        self.llm = llm
        self.config = config or AgentConfig()
        if not self.config.model:
            self.config = replace(self.config, model=llm.model)
        self._configure_llm()

        self.tools = tools if tools is not None else ToolRegistry()
        self.store = store
        self.token_budget = token_budget or TokenBudget()
        self.locks = locks or get_conversation_locks()
        self.status = AgentStatus.IDLE
        self.owner = f"agent-{uuid.uuid4().hex[:8]}"

        self.conversation = ConversationState(
            conversation_id=conversation_id or str(uuid.uuid4()),
            model=self.config.model,
            system_prompt=self.config.system_prompt,
        )

    def _configure_llm(self) -> None:
        cfg = self.config
        if self.llm.model != cfg.model:
            self.llm.model = cfg.model
        if cfg.temperature is not None:
            self.llm.temperature = cfg.temperature
        if cfg.max_output_tokens is not None:
            self.llm.max_tokens = cfg.max_output_tokens
        if cfg.stream is not None:
            self.llm.stream_responses = cfg.stream
        if cfg.json_mode is not None:
            self.llm.json_mode = cfg.json_mode

    @property
    def conversation_id(self) -> str:
        return self.conversation.id

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def state(self) -> Conversation:
        """Snapshot of the conversation as it would be persisted."""
        return self.conversation.snapshot()

    def push_user_message(self, content: str) -> None:
        self.conversation.add_user_message(content)

    def push_assistant_message(self, content: str) -> None:
        self.conversation.add_assistant_message(content)

    async def run(self, user_text: str, cancel_event: asyncio.Event | None = None) -> str:
        """Process a user message and return the final answer.

        Holds the conversation's ownership lease for the whole run, so a
        realtime session (or another run) on the same conversation fails
        with ConversationBusy instead of interleaving.
        """
        async with self.locks.acquire(self.conversation_id, self.owner):
            self.status = AgentStatus.IDLE
            try:
                self.conversation.add_user_message(user_text)
                answer = await self._run_turns(cancel_event)
            except AgioError as e:
                self.status = AgentStatus.ERROR
                logger.error(
                    "Agent run failed",
                    conversation_id=self.conversation_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self._save_after_failure()
                raise

            self.status = AgentStatus.DONE
            await self._auto_save()
            return answer

    async def _run_turns(self, cancel_event: asyncio.Event | None) -> str:
        definitions = self.tools.get_definitions() or None
        turns = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise AgentError("Agent run cancelled")
            if turns >= self.config.max_turns:
                raise TurnLimitExceeded(self.config.max_turns)
            turns += 1

            self.status = AgentStatus.AWAITING_MODEL
            response = await self._request_completion(definitions)

            if response.tool_calls:
                self.conversation.add_assistant_message(response.content, response.tool_calls)

                self.status = AgentStatus.EXECUTING_TOOLS
                results = await self.tools.execute_all(response.tool_calls)
                for call, result in zip(response.tool_calls, results):
                    self.conversation.add_tool_result(call.id, result.to_content(), call.name)

                logger.info(
                    "Tool round completed",
                    conversation_id=self.conversation_id,
                    turn=turns,
                    tool_calls=len(response.tool_calls),
                    failures=sum(1 for r in results if not r.success),
                )
                await self._auto_save()
                continue

            if not response.content:
                raise ParseError("Model response has neither content nor tool calls")

            self.conversation.add_assistant_message(response.content)
            logger.info(
                "Final answer",
                conversation_id=self.conversation_id,
                turns=turns,
                token_count=self.conversation.token_count,
            )
            return response.content

    async def _request_completion(self, definitions) -> LLMResponse:
        history = self.token_budget.fit_history(
            self.conversation.history(),
            self.config.max_context_tokens,
            self.model,
        )
        response = await with_retries(
            lambda: self.llm.generate(history, tools=definitions),
            self.config.retry,
        )
        self.conversation.record_usage(response.total_tokens)
        return response

    async def _auto_save(self) -> None:
        if self.config.auto_save and self.store is not None:
            await self.save()

    async def _save_after_failure(self) -> None:
        # The original error propagates; a failed save is only logged.
        if not (self.config.auto_save and self.store is not None):
            return
        try:
            await self.save()
        except AgioError as e:
            logger.error("Failed to save conversation after error", conversation_id=self.conversation_id, error=str(e))

    async def stream(self, user_text: str) -> AsyncIterator[str]:
        """Stream a final answer without tool use.

        The full text is appended to the conversation once the stream ends.
        """
        async with self.locks.acquire(self.conversation_id, self.owner):
            self.conversation.add_user_message(user_text)
            history = self.token_budget.fit_history(
                self.conversation.history(),
                self.config.max_context_tokens,
                self.model,
            )

            self.status = AgentStatus.AWAITING_MODEL
            chunks: list[str] = []
            try:
                async for chunk in self.llm.stream(history):
                    chunks.append(chunk)
                    yield chunk
            except AgioError:
                self.status = AgentStatus.ERROR
                raise

            self.conversation.add_assistant_message("".join(chunks))
            self.status = AgentStatus.DONE
            await self._auto_save()

    async def save(self) -> str:
        """Persist the conversation and return its id."""
        if self.store is None:
            raise AgentError("No persistence store configured")
        snapshot = self.conversation.snapshot()
        conversation_id = await self.store.save_conversation(snapshot)
        self.conversation.assign_id(conversation_id)
        self.conversation.created_at = snapshot.created_at
        self.conversation.updated_at = snapshot.updated_at
        return conversation_id

    async def load(self) -> bool:
        """Replace the in-memory state with the stored copy, if one exists."""
        if self.store is None:
            raise AgentError("No persistence store configured")
        if not await self.store.exists(self.conversation_id):
            return False
        stored = await self.store.load_conversation(self.conversation_id)
        self.conversation.restore(stored)
        self.config = replace(self.config, model=stored.model or self.config.model, system_prompt=stored.system_prompt)
        self._configure_llm()
        return True

    async def delete(self) -> None:
        if self.store is None:
            raise AgentError("No persistence store configured")
        await self.store.delete_conversation(self.conversation_id)

    @classmethod
    async def resume(
        cls,
        conversation_id: str,
        llm: BaseLLM,
        store: "PersistenceStore",
        config: AgentConfig | None = None,
        tools: ToolRegistry | None = None,
        token_budget: TokenBudget | None = None,
        locks: ConversationLocks | None = None,
    ) -> "Agent":
        """Rebuild an agent from a stored conversation.

        Model and system prompt come from the stored record. Raises
        ConversationNotFound when the id is unknown.
        """
        stored = await store.load_conversation(conversation_id)
        config = replace(
            config or AgentConfig(),
            model=stored.model or (config.model if config else "") or llm.model,
            system_prompt=stored.system_prompt,
        )
        agent = cls(
            llm,
            config=config,
            tools=tools,
            store=store,
            conversation_id=conversation_id,
            token_budget=token_budget,
            locks=locks,
        )
        agent.conversation.restore(stored)
        logger.info("Agent resumed", conversation_id=conversation_id, messages=stored.message_count)
        return agent

    def realtime(self, transport: "RealtimeTransport | None" = None) -> "RealtimeSession":
        """Create a realtime session bound to this conversation."""
        from ..realtime.session import RealtimeSession

        if self.llm.provider_name != "openai":
            raise ConfigError(f"Realtime sessions need an OpenAI model, not {self.llm.provider_name}")

        config = LLMConfig(
            provider="openai",
            model=self.model,
            api_key=self.llm.api_key,
            base_url=self.llm.base_url,
        )
        return RealtimeSession(config, self.conversation, transport=transport, locks=self.locks)
