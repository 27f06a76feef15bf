from datetime import datetime, timezone

import pytest

from app.errors import PersistenceError
from app.services.record_store import MemoryRecordStore, SqlRecordStore


def _conversation(conversation_id: str, user_id: str = "u1", assessment_id=None):
    now = datetime.now(timezone.utc)
    return {
        "id": conversation_id,
        "user_id": user_id,
        "assessment_id": assessment_id,
        "assessment_pattern": None,
        "created_at": now,
        "updated_at": now,
    }


@pytest.mark.asyncio
async def test_sql_store_crud(test_session) -> None:
    store = SqlRecordStore(test_session)

    created = await store.create("conversations", _conversation("c1"))
    assert created["id"] == "c1"
    _ = await store.create("conversations", _conversation("c2", assessment_id="a1"))
    _ = await store.create("conversations", _conversation("c3", user_id="u2"))

    assert {r["id"] for r in await store.find_by("conversations", "user_id", "u1")} == {"c1", "c2"}
    assert [r["id"] for r in await store.find_where("conversations", {"user_id": "u1", "assessment_id": None})] == ["c1"]

    updated = await store.update("conversations", "c1", {"assessment_pattern": "regular"})
    assert updated is not None and updated["assessment_pattern"] == "regular"
    assert await store.update("conversations", "missing", {"assessment_pattern": "x"}) is None

    assert await store.delete("conversations", "c1") is True
    assert await store.delete("conversations", "c1") is False
    assert await store.delete_where("conversations", {"user_id": "u1"}) == 1
    assert await store.find_by_id("conversations", "c2") is None


@pytest.mark.asyncio
async def test_sql_store_rejects_unknown_table_and_columns(test_session) -> None:
    store = SqlRecordStore(test_session)
    with pytest.raises(PersistenceError):
        await store.find_by_id("nope", "x")
    with pytest.raises(PersistenceError):
        await store.find_where("conversations", {"bogus": 1})
    with pytest.raises(PersistenceError):
        await store.create("conversations", {**_conversation("c9"), "bogus": 1})


@pytest.mark.asyncio
async def test_sql_store_duplicate_id_raises_persistence_error(test_session) -> None:
    store = SqlRecordStore(test_session)
    _ = await store.create("conversations", _conversation("dup"))
    with pytest.raises(PersistenceError):
        await store.create("conversations", _conversation("dup"))
    # 回滚后会话仍可用
    assert await store.find_by_id("conversations", "dup") is not None


@pytest.mark.asyncio
async def test_memory_store_isolates_copies() -> None:
    store = MemoryRecordStore()
    record = {"id": "m1", "tags": ["a"]}
    created = await store.create("things", record)
    created["tags"].append("b")
    record["tags"].append("c")

    found = await store.find_by_id("things", "m1")
    assert found == {"id": "m1", "tags": ["a"]}
    with pytest.raises(PersistenceError):
        await store.create("things", {"id": "m1"})
    assert await store.delete_where("things", {"id": "m1"}) == 1
