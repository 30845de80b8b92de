import pytest

from quiz_client.db_models import LocalRecord
from quiz_client.session_store import SessionStore


@pytest.mark.asyncio
async def test_stored_player_id_is_reused_case_insensitively(store):
    await store.save_session("ABC1", "Alice", "p1")

    assert await store.find_player_id("abc1", "ALICE") == "p1"
    assert await store.find_player_id("ABC1", "  alice ") == "p1"


@pytest.mark.asyncio
async def test_different_name_joins_as_new_player(store):
    await store.save_session("ABC1", "Alice", "p1")

    assert await store.find_player_id("ABC1", "Bob") is None


@pytest.mark.asyncio
async def test_session_is_keyed_by_upper_cased_room(store):
    identity = await store.save_session("abc1", "Alice", "p1")

    assert identity.room_code == "ABC1"
    assert SessionStore.key_for("abc1") == "quiz_player_session:ABC1"
    assert (await store.load_session("ABC1")).player_id == "p1"


@pytest.mark.asyncio
async def test_stale_session_is_discarded_on_read(store, clock):
    await store.save_session("ABC1", "Alice", "p1")
    clock.advance(3601)

    assert await store.load_session("ABC1") is None
    # Deleted, not just hidden
    clock.advance(-3601)
    assert await store.load_session("ABC1") is None


@pytest.mark.asyncio
async def test_recent_session_survives(store, clock):
    await store.save_session("ABC1", "Alice", "p1")
    clock.advance(3599)

    assert await store.find_player_id("ABC1", "alice") == "p1"


@pytest.mark.asyncio
async def test_last_write_wins(store):
    await store.save_session("ABC1", "Alice", "p1")
    await store.save_session("ABC1", "Alice", "p2")

    assert await store.find_player_id("ABC1", "Alice") == "p2"


@pytest.mark.asyncio
async def test_most_recent_name_is_remembered(store, clock):
    await store.save_session("ROOM9", "Dana", "p4")

    assert await store.load_last_name() == "Dana"

    clock.advance(7200)
    assert await store.load_last_name() is None


@pytest.mark.asyncio
async def test_malformed_record_is_ignored_and_deleted(store):
    key = SessionStore.key_for("BAD1")
    async with store._sessions() as session:
        session.add(LocalRecord(key=key, value="{not json", updated_at=0))
        await session.commit()

    assert await store.load_session("BAD1") is None
    async with store._sessions() as session:
        assert await session.get(LocalRecord, key) is None


@pytest.mark.asyncio
async def test_record_missing_fields_is_discarded(store):
    await store._put(SessionStore.key_for("HALF"), {"roomCode": "HALF"})

    assert await store.load_session("HALF") is None


@pytest.mark.asyncio
async def test_clear_session(store):
    await store.save_session("ABC1", "Alice", "p1")
    await store.clear_session("abc1")

    assert await store.load_session("ABC1") is None
