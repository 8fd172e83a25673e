import os
import sys

import pytest
import redis.asyncio as redis

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sessiongate.modules.auth import CredentialRecord, InMemoryCredentialStore, RedisCredentialStore
from sessiongate.modules.session import PersistenceFailure


@pytest.fixture
def redis_store(mock_redis):
    return RedisCredentialStore(mock_redis)


@pytest.mark.asyncio
async def test_upsert_writes_hash_and_index(redis_store, mock_redis):
    """Upsert writes non-null fields, clears None fields and indexes the id."""
    await redis_store.upsert("s1", status="pending", challenge=None)

    mock_redis.hset.assert_called_once()
    args, kwargs = mock_redis.hset.call_args
    assert args[0] == "session:s1"
    assert kwargs["mapping"]["status"] == "pending"
    assert kwargs["mapping"]["session_id"] == "s1"
    assert "updated_at" in kwargs["mapping"]
    assert "challenge" not in kwargs["mapping"]

    mock_redis.hdel.assert_called_once_with("session:s1", "challenge")
    mock_redis.hsetnx.assert_called_once()
    assert mock_redis.hsetnx.call_args[0][:2] == ("session:s1", "created_at")
    mock_redis.sadd.assert_called_once_with("sessions:all", "s1")


@pytest.mark.asyncio
async def test_upsert_without_cleared_fields_skips_hdel(redis_store, mock_redis):
    await redis_store.upsert("s1", credential="blob")

    mock_redis.hdel.assert_not_called()


@pytest.mark.asyncio
async def test_upsert_rejects_unknown_fields(redis_store, mock_redis):
    with pytest.raises(ValueError):
        await redis_store.upsert("s1", password="x")

    mock_redis.hset.assert_not_called()


@pytest.mark.asyncio
async def test_get_missing_record(redis_store, mock_redis):
    mock_redis.hgetall.return_value = {}

    assert await redis_store.get("nope") is None


@pytest.mark.asyncio
async def test_get_treats_empty_fields_as_missing(redis_store, mock_redis):
    mock_redis.hgetall.return_value = {
        "session_id": "s1",
        "status": "connected",
        "challenge": "",
        "credential": "abc",
    }

    record = await redis_store.get("s1")

    assert record == CredentialRecord(session_id="s1", status="connected", credential="abc")


@pytest.mark.asyncio
async def test_redis_errors_become_persistence_failures(redis_store, mock_redis):
    mock_redis.hgetall.side_effect = redis.ConnectionError("down")
    mock_redis.hset.side_effect = redis.ConnectionError("down")

    with pytest.raises(PersistenceFailure) as read_error:
        await redis_store.get("s1")
    with pytest.raises(PersistenceFailure) as write_error:
        await redis_store.upsert("s1", status="pending")

    assert read_error.value.session_id == "s1"
    assert "down" in str(write_error.value)


@pytest.mark.asyncio
async def test_round_trip_with_stateful_redis(mock_redis_with_data):
    """Records read back what was written, and delete removes the index entry."""
    store = RedisCredentialStore(mock_redis_with_data)

    await store.upsert("s1", status="awaiting_challenge", challenge="ref,key")
    await store.upsert("s1", status="connected", challenge=None, credential='{"me":"1"}')
    record = await store.get("s1")

    assert record.status == "connected"
    assert record.challenge is None
    assert record.credential == '{"me":"1"}'
    assert record.created_at is not None

    await store.delete("s1")

    assert await store.get("s1") is None
    assert mock_redis_with_data._sets["sessions:all"] == set()


@pytest.mark.asyncio
async def test_list_records_prunes_stale_index(mock_redis_with_data):
    store = RedisCredentialStore(mock_redis_with_data)
    await store.upsert("live", status="connected")
    mock_redis_with_data._sets["sessions:all"].add("ghost")

    records = await store.list_records()

    assert [r.session_id for r in records] == ["live"]
    assert "ghost" not in mock_redis_with_data._sets["sessions:all"]


@pytest.mark.asyncio
async def test_list_records_survives_failed_prune(redis_store, mock_redis):
    """A Redis error while pruning a stale id is logged, not raised."""
    mock_redis.smembers.return_value = {"gone"}
    mock_redis.hgetall.return_value = {}
    mock_redis.srem.side_effect = redis.ConnectionError("down")

    records = await redis_store.list_records()

    assert records == []
    mock_redis.srem.assert_called_once_with("sessions:all", "gone")


@pytest.mark.asyncio
async def test_created_at_is_stable(mock_redis_with_data):
    store = RedisCredentialStore(mock_redis_with_data)
    await store.upsert("s1", status="pending")
    first = (await store.get("s1")).created_at

    await store.upsert("s1", status="connecting")

    assert (await store.get("s1")).created_at == first


@pytest.mark.asyncio
async def test_in_memory_store_returns_copies():
    store = InMemoryCredentialStore()
    await store.upsert("s1", status="pending", credential="abc")

    record = await store.get("s1")
    record.credential = "tampered"

    assert (await store.get("s1")).credential == "abc"


@pytest.mark.asyncio
async def test_in_memory_store_clears_none_fields():
    store = InMemoryCredentialStore()
    await store.upsert("s1", status="awaiting_challenge", challenge="ref")
    await store.upsert("s1", challenge=None)

    record = await store.get("s1")
    assert record.challenge is None
    assert record.status == "awaiting_challenge"

    await store.delete("s1")
    assert await store.list_records() == []
