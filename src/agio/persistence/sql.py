"""
Relational persistence store.

Uses SQLAlchemy 2.0 async ORM. One row per conversation holds the metadata
columns and the serialized ordered message list.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, Text, delete, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..agent.conversation import Conversation
from ..errors import ConversationNotFound, PersistenceError
from ..llm.base import LLMMessage
from .base import ConversationMetadata, EntityId, PersistenceStore, check_page, stamp_for_save

logger = structlog.get_logger()


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class ConversationRecord(Base):
    """Stored conversation."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    model: Mapped[str] = mapped_column(String(100), default="")
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    message_count: Mapped[int] = mapped_column(Integer, default=0)
    token_count: Mapped[int] = mapped_column(Integer, default=0)
    messages: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are always UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _to_conversation(record: ConversationRecord) -> Conversation:
    return Conversation(
        id=record.id,
        name=record.name,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        model=record.model or "",
        system_prompt=record.system_prompt,
        token_count=record.token_count,
        messages=[LLMMessage.from_dict(m) for m in record.messages or []],
    )


def _to_metadata(record: ConversationRecord) -> ConversationMetadata:
    return ConversationMetadata(
        id=record.id,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        message_count=record.message_count,
        token_count=record.token_count,
        model=record.model or "",
        name=record.name,
    )


class SQLStore(PersistenceStore):
    """SQLAlchemy-backed PersistenceStore."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    async def create(cls, database_url: str) -> "SQLStore":
        """Connect to ``database_url`` and create tables if needed."""
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(database_url, echo=False)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            await engine.dispose()
            raise PersistenceError(f"Database initialization failed: {e}") from e

        logger.info("Database initialized", backend=url.get_backend_name())
        return cls(engine)

    async def save_conversation(self, conversation: Conversation) -> EntityId:
        try:
            async with self.session_maker() as db:
                record = await db.get(ConversationRecord, conversation.id) if conversation.id else None
                existing = _to_conversation(record) if record is not None else None
                stamp_for_save(conversation, existing)

                if record is None:
                    record = ConversationRecord(id=conversation.id, created_at=conversation.created_at)
                    db.add(record)

                record.name = conversation.name
                record.model = conversation.model
                record.system_prompt = conversation.system_prompt
                record.message_count = conversation.message_count
                record.token_count = conversation.token_count
                record.messages = [m.to_dict() for m in conversation.messages]
                record.updated_at = conversation.updated_at

                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save conversation: {e}") from e

        logger.debug("Conversation saved", conversation_id=conversation.id, backend="sql")
        return conversation.id

    async def load_conversation(self, conversation_id: EntityId) -> Conversation:
        try:
            async with self.session_maker() as db:
                record = await db.get(ConversationRecord, conversation_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load conversation: {e}") from e

        if record is None:
            raise ConversationNotFound(conversation_id)
        return _to_conversation(record)

    async def list_conversations(self, limit: int = 10, offset: int = 0) -> list[ConversationMetadata]:
        check_page(limit, offset)
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(ConversationRecord)
                    .order_by(ConversationRecord.updated_at.desc(), ConversationRecord.id.asc())
                    .limit(limit)
                    .offset(offset)
                )
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list conversations: {e}") from e

        return [_to_metadata(r) for r in records]

    async def delete_conversation(self, conversation_id: EntityId) -> None:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    delete(ConversationRecord).where(ConversationRecord.id == conversation_id)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete conversation: {e}") from e

        if result.rowcount:
            logger.debug("Conversation deleted", conversation_id=conversation_id, backend="sql")

    async def close(self) -> None:
        await self.engine.dispose()
