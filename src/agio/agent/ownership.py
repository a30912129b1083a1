"""
Exclusive ownership of conversations.

Only one channel (the turn-based agent loop or a realtime session) may
mutate a conversation at a time. Owners take a lease from a shared
ConversationLocks registry; a second owner asking for a held conversation
gets ConversationBusy immediately instead of waiting.
"""

import structlog

from ..errors import ConversationBusy

logger = structlog.get_logger()


class OwnershipLease:
    """Handle for a held conversation; releasing it is idempotent."""

    def __init__(self, locks: "ConversationLocks", conversation_id: str, owner: str):
        self._locks = locks
        self.conversation_id = conversation_id
        self.owner = owner
        self.released = False

    def release(self) -> None:
        if not self.released:
            self._locks._release(self)
            self.released = True

    async def __aenter__(self) -> "OwnershipLease":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.release()


class ConversationLocks:
    """Registry of current conversation owners."""

    def __init__(self):
        self._owners: dict[str, OwnershipLease] = {}

    def acquire(self, conversation_id: str, owner: str) -> OwnershipLease:
        """Take ownership of a conversation or raise ConversationBusy."""
        current = self._owners.get(conversation_id)
        if current is not None:
            raise ConversationBusy(conversation_id, current.owner)
        lease = OwnershipLease(self, conversation_id, owner)
        self._owners[conversation_id] = lease
        logger.debug("Conversation acquired", conversation_id=conversation_id, owner=owner)
        return lease

    def owner_of(self, conversation_id: str) -> str | None:
        lease = self._owners.get(conversation_id)
        return lease.owner if lease else None

    def is_held(self, conversation_id: str) -> bool:
        return conversation_id in self._owners

    def _release(self, lease: OwnershipLease) -> None:
        if self._owners.get(lease.conversation_id) is lease:
            del self._owners[lease.conversation_id]
            logger.debug(
                "Conversation released",
                conversation_id=lease.conversation_id,
                owner=lease.owner,
            )


_default_locks = ConversationLocks()


def get_conversation_locks() -> ConversationLocks:
    """Process-wide registry shared by agents and realtime sessions."""
    return _default_locks
