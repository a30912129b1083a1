"""
Persistence layer for storing and retrieving conversations.

Backends:
- MemoryStore: dict in process memory, no durability
- FileStore: one JSON document per conversation id
- SQLStore: SQLAlchemy async ORM, one row per conversation
"""

from ..config import Settings
from .base import ConversationMetadata, EntityId, PersistenceStore, generate_id
from .filesystem import FileStore
from .memory import MemoryStore
from .sql import SQLStore


async def create_store(settings: Settings) -> PersistenceStore:
    """Create the store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "filesystem":
        return FileStore(settings.storage_path)
    if settings.storage_backend == "sql":
        return await SQLStore.create(settings.database_url)
    return MemoryStore()


__all__ = [
    "ConversationMetadata",
    "EntityId",
    "PersistenceStore",
    "generate_id",
    "FileStore",
    "MemoryStore",
    "SQLStore",
    "create_store",
]
