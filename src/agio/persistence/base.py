"""
Persistence contract for conversations.

Every backend implements the same four operations with the same semantics:

- ``save_conversation`` upserts the full conversation and assigns an id on first save.
- ``load_conversation`` raises ConversationNotFound for unknown ids.
- ``list_conversations`` pages metadata ordered by ``updated_at`` descending, ties broken
  by id ascending.
- ``delete_conversation`` is idempotent: deleting an unknown id is not an error.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..agent.conversation import Conversation, utcnow
from ..errors import ConversationNotFound

EntityId = str


def generate_id() -> EntityId:
    """Generate a new unique conversation id."""
    return str(uuid.uuid4())


@dataclass
class ConversationMetadata:
    """Metadata for a stored conversation."""

    id: EntityId
    created_at: datetime
    updated_at: datetime
    message_count: int
    token_count: int
    model: str = ""
    name: str | None = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationMetadata":
        return cls(
            id=conversation.id,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            message_count=conversation.message_count,
            token_count=conversation.token_count,
            model=conversation.model,
            name=conversation.name,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "message_count": self.message_count,
            "token_count": self.token_count,
        }


def check_page(limit: int, offset: int) -> None:
    if limit < 0 or offset < 0:
        raise ValueError("limit and offset must be non-negative")


def sort_key(meta: ConversationMetadata) -> tuple[float, str]:
    """Ordering shared by all backends: newest first, then by id."""
    return (-meta.updated_at.timestamp(), meta.id)


def paginate(items: list[ConversationMetadata], limit: int, offset: int) -> list[ConversationMetadata]:
    check_page(limit, offset)
    return sorted(items, key=sort_key)[offset:offset + limit]


def stamp_for_save(conversation: Conversation, existing: Conversation | None) -> Conversation:
    """Prepare a conversation for writing.

    Assigns an id when missing, keeps the original ``created_at`` of an
    existing record and moves ``updated_at`` to now.
    """
    if not conversation.id:
        conversation.id = generate_id()
    if existing is not None:
        conversation.created_at = existing.created_at
    conversation.updated_at = max(utcnow(), conversation.created_at)
    return conversation


class PersistenceStore(ABC):
    """Core persistence interface for conversations."""

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> EntityId:
        """Upsert a conversation and return its id."""
        pass

    @abstractmethod
    async def load_conversation(self, conversation_id: EntityId) -> Conversation:
        """Load a conversation or raise ConversationNotFound."""
        pass

    @abstractmethod
    async def list_conversations(self, limit: int = 10, offset: int = 0) -> list[ConversationMetadata]:
        """List stored conversations, newest first."""
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: EntityId) -> None:
        """Delete a conversation. Unknown ids are ignored."""
        pass

    async def exists(self, conversation_id: EntityId) -> bool:
        try:
            await self.load_conversation(conversation_id)
        except ConversationNotFound:
            return False
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None
