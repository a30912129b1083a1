"""
In-memory persistence store.

Useful for tests and development; nothing survives a process restart.
"""

import asyncio
import copy

import structlog

from ..agent.conversation import Conversation
from ..errors import ConversationNotFound
from .base import ConversationMetadata, EntityId, PersistenceStore, paginate, stamp_for_save

logger = structlog.get_logger()


class MemoryStore(PersistenceStore):
    """Dict-backed PersistenceStore."""

    def __init__(self):
        self._conversations: dict[EntityId, Conversation] = {}
        self._lock = asyncio.Lock()

    async def save_conversation(self, conversation: Conversation) -> EntityId:
        async with self._lock:
            existing = self._conversations.get(conversation.id) if conversation.id else None
            stamp_for_save(conversation, existing)
            self._conversations[conversation.id] = copy.deepcopy(conversation)
        logger.debug("Conversation saved", conversation_id=conversation.id, backend="memory")
        return conversation.id

    async def load_conversation(self, conversation_id: EntityId) -> Conversation:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise ConversationNotFound(conversation_id)
            return copy.deepcopy(conversation)

    async def list_conversations(self, limit: int = 10, offset: int = 0) -> list[ConversationMetadata]:
        async with self._lock:
            metadata = [
                ConversationMetadata.from_conversation(c) for c in self._conversations.values()
            ]
        return paginate(metadata, limit, offset)

    async def delete_conversation(self, conversation_id: EntityId) -> None:
        async with self._lock:
            removed = self._conversations.pop(conversation_id, None)
        if removed is not None:
            logger.debug("Conversation deleted", conversation_id=conversation_id, backend="memory")
