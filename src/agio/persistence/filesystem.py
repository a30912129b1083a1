"""
Filesystem persistence store.

Stores one JSON document per conversation id under a directory. Writes go
to a temporary file first and are moved into place, so a crash mid-write
leaves the previous version intact.
"""

import asyncio
import json
import os
import re
from pathlib import Path

import structlog

from ..agent.conversation import Conversation
from ..errors import ConversationNotFound, PersistenceError
from .base import ConversationMetadata, EntityId, PersistenceStore, paginate, stamp_for_save

logger = structlog.get_logger()

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class FileStore(PersistenceStore):
    """Directory-backed PersistenceStore."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path_for(self, conversation_id: EntityId) -> Path:
        if not _SAFE_ID.match(conversation_id):
            raise PersistenceError(f"Invalid conversation id: {conversation_id!r}")
        return self.directory / f"{conversation_id}.json"

    def _read(self, path: Path) -> Conversation:
        try:
            return Conversation.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupt conversation file {path.name}: {e}") from e

    def _write(self, path: Path, conversation: Conversation) -> None:
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(conversation.to_dict(), ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def _save_sync(self, conversation: Conversation) -> EntityId:
        existing = None
        if conversation.id:
            path = self._path_for(conversation.id)
            if path.exists():
                existing = self._read(path)
        stamp_for_save(conversation, existing)
        self._write(self._path_for(conversation.id), conversation)
        return conversation.id

    def _load_sync(self, conversation_id: EntityId) -> Conversation:
        if not _SAFE_ID.match(conversation_id):
            raise ConversationNotFound(conversation_id)
        path = self._path_for(conversation_id)
        if not path.exists():
            raise ConversationNotFound(conversation_id)
        return self._read(path)

    def _list_sync(self) -> list[ConversationMetadata]:
        metadata = []
        for path in self.directory.glob("*.json"):
            try:
                metadata.append(ConversationMetadata.from_conversation(self._read(path)))
            except PersistenceError as e:
                logger.warning("Skipping unreadable conversation file", file=path.name, error=str(e))
        return metadata

    def _delete_sync(self, conversation_id: EntityId) -> bool:
        if not _SAFE_ID.match(conversation_id):
            return False
        path = self._path_for(conversation_id)
        if path.exists():
            path.unlink()
            return True
        return False

    async def save_conversation(self, conversation: Conversation) -> EntityId:
        async with self._lock:
            try:
                conversation_id = await asyncio.to_thread(self._save_sync, conversation)
            except OSError as e:
                raise PersistenceError(f"Failed to save conversation: {e}") from e
        logger.debug("Conversation saved", conversation_id=conversation_id, backend="filesystem")
        return conversation_id

    async def load_conversation(self, conversation_id: EntityId) -> Conversation:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._load_sync, conversation_id)
            except OSError as e:
                raise PersistenceError(f"Failed to load conversation: {e}") from e

    async def list_conversations(self, limit: int = 10, offset: int = 0) -> list[ConversationMetadata]:
        async with self._lock:
            try:
                metadata = await asyncio.to_thread(self._list_sync)
            except OSError as e:
                raise PersistenceError(f"Failed to list conversations: {e}") from e
        return paginate(metadata, limit, offset)

    async def delete_conversation(self, conversation_id: EntityId) -> None:
        async with self._lock:
            try:
                removed = await asyncio.to_thread(self._delete_sync, conversation_id)
            except OSError as e:
                raise PersistenceError(f"Failed to delete conversation: {e}") from e
        if removed:
            logger.debug("Conversation deleted", conversation_id=conversation_id, backend="filesystem")
