"""
Tests for persistence backends.

Every backend runs the same contract tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from agio.agent.conversation import Conversation
from agio.config import Settings
from agio.errors import ConversationNotFound, PersistenceError
from agio.llm.base import LLMMessage, Role, ToolCall
from agio.persistence import FileStore, MemoryStore, SQLStore, create_store


@pytest_asyncio.fixture(params=["memory", "filesystem", "sql"])
async def store(request, tmp_path):
    if request.param == "memory":
        backend = MemoryStore()
    elif request.param == "filesystem":
        backend = FileStore(tmp_path / "conversations")
    else:
        backend = await SQLStore.create(f"sqlite+aiosqlite:///{tmp_path / 'agio.db'}")
    yield backend
    await backend.close()


@pytest.fixture
def ticking_clock(monkeypatch):
    """Make every save one second later than the previous one."""
    ticks = iter(range(10_000))
    base = datetime(2100, 1, 1, tzinfo=timezone.utc)
    monkeypatch.setattr("agio.persistence.base.utcnow", lambda: base + timedelta(seconds=next(ticks)))


def make_conversation(text: str = "Hello", conversation_id: str = "") -> Conversation:
    return Conversation(
        id=conversation_id,
        model="gpt-4o",
        system_prompt="You are helpful.",
        token_count=17,
        messages=[
            LLMMessage(role=Role.SYSTEM, content="You are helpful."),
            LLMMessage(role=Role.USER, content=text),
            LLMMessage(role=Role.ASSISTANT, content="", tool_calls=[
                ToolCall(id="call_1", name="search", arguments={"q": text}),
            ]),
            LLMMessage(role=Role.TOOL, content="result", tool_call_id="call_1", name="search"),
            LLMMessage(role=Role.ASSISTANT, content="Answer"),
        ],
    )


@pytest.mark.asyncio
async def test_save_assigns_id_and_load_returns_same_messages(store):
    """Test save/load keeps the ordered messages."""
    conversation = make_conversation()

    conversation_id = await store.save_conversation(conversation)
    loaded = await store.load_conversation(conversation_id)

    assert conversation_id
    assert loaded.id == conversation_id
    assert [m.to_dict() for m in loaded.messages] == [m.to_dict() for m in conversation.messages]
    assert loaded.model == "gpt-4o"
    assert loaded.system_prompt == "You are helpful."
    assert loaded.token_count == 17


@pytest.mark.asyncio
async def test_save_is_upsert_and_keeps_created_at(store):
    """Test saving again updates the record without changing created_at."""
    conversation = make_conversation()
    conversation_id = await store.save_conversation(conversation)
    first = await store.load_conversation(conversation_id)

    first.messages.append(LLMMessage(role=Role.USER, content="More"))
    await store.save_conversation(first)
    second = await store.load_conversation(conversation_id)

    assert second.message_count == 6
    assert second.created_at == first.created_at
    assert second.updated_at >= first.created_at


@pytest.mark.asyncio
async def test_delete_then_load_not_found(store):
    """Test deleted conversations report NotFound."""
    conversation_id = await store.save_conversation(make_conversation())

    await store.delete_conversation(conversation_id)

    with pytest.raises(ConversationNotFound):
        await store.load_conversation(conversation_id)
    assert await store.exists(conversation_id) is False


@pytest.mark.asyncio
async def test_delete_is_idempotent(store):
    """Test deleting an unknown id is not an error."""
    await store.delete_conversation("never-saved")
    await store.delete_conversation("never-saved")


@pytest.mark.asyncio
async def test_load_unknown_id(store):
    """Test loading an unknown id raises ConversationNotFound."""
    with pytest.raises(ConversationNotFound):
        await store.load_conversation("missing")


@pytest.mark.asyncio
async def test_list_is_limited_and_newest_first(store, ticking_clock):
    """Test list pages by updated_at descending."""
    ids = []
    for i in range(12):
        ids.append(await store.save_conversation(make_conversation(f"message {i}")))

    page = await store.list_conversations(limit=10, offset=0)

    assert len(page) == 10
    stamps = [m.updated_at for m in page]
    assert stamps == sorted(stamps, reverse=True)
    assert page[0].id == ids[-1]
    assert page[0].message_count == 5

    rest = await store.list_conversations(limit=10, offset=10)
    assert len(rest) == 2
    assert not {m.id for m in rest} & {m.id for m in page}


@pytest.mark.asyncio
async def test_list_rejects_negative_paging(store):
    """Test negative limit or offset is rejected."""
    with pytest.raises(ValueError):
        await store.list_conversations(limit=-1)
    with pytest.raises(ValueError):
        await store.list_conversations(offset=-1)


@pytest.mark.asyncio
async def test_list_order_identical_across_backends(tmp_path, monkeypatch):
    """Test identical data lists in the same order on every backend."""
    base = datetime(2100, 1, 1, tzinfo=timezone.utc)
    # Two conversations share an updated_at to exercise the id tie-break.
    stamps = {"b": base, "a": base, "c": base + timedelta(minutes=5), "d": base - timedelta(minutes=5)}
    current = {}
    monkeypatch.setattr("agio.persistence.base.utcnow", lambda: current["now"])

    stores = [
        MemoryStore(),
        FileStore(tmp_path / "files"),
        await SQLStore.create(f"sqlite+aiosqlite:///{tmp_path / 'order.db'}"),
    ]
    orders = []
    for backend in stores:
        for conversation_id, stamp in stamps.items():
            current["now"] = stamp
            await backend.save_conversation(make_conversation(conversation_id=conversation_id))
        orders.append([m.id for m in await backend.list_conversations()])
        await backend.close()

    assert orders[0] == orders[1] == orders[2]


@pytest.mark.asyncio
async def test_file_store_rejects_path_escape(tmp_path):
    """Test ids cannot point outside the store directory."""
    store = FileStore(tmp_path / "conversations")

    with pytest.raises(PersistenceError):
        await store.save_conversation(make_conversation(conversation_id="../escape"))
    with pytest.raises(ConversationNotFound):
        await store.load_conversation("../escape")
    await store.delete_conversation("../escape")


@pytest.mark.asyncio
async def test_file_store_corrupt_file(tmp_path):
    """Test a corrupt document fails load but is skipped by list."""
    store = FileStore(tmp_path / "conversations")
    good_id = await store.save_conversation(make_conversation())
    (tmp_path / "conversations" / "broken.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        await store.load_conversation("broken")

    listed = await store.list_conversations()
    assert [m.id for m in listed] == [good_id]


@pytest.mark.asyncio
async def test_create_store_from_settings(tmp_path):
    """Test the backend factory honours storage_backend."""
    memory = await create_store(Settings(storage_backend="memory"))
    files = await create_store(Settings(storage_backend="filesystem", storage_path=str(tmp_path / "f")))
    sql = await create_store(Settings(
        storage_backend="sql",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'nested' / 'agio.db'}",
    ))

    assert isinstance(memory, MemoryStore)
    assert isinstance(files, FileStore)
    assert isinstance(sql, SQLStore)
    assert (tmp_path / "nested").is_dir()

    await sql.close()
