"""Unit tests for the Redis-backed chunk store."""

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any

import pytest
from fakeredis.aioredis import FakeRedis

from media_intake.chunks import ChunkUpload
from media_intake.chunks import EmptyPayload
from media_intake.chunks import InvalidChunkIndex
from media_intake.chunks import RedisChunkStore
from media_intake.chunks import SessionComplete
from media_intake.chunks.redis_store import SESSIONS_INDEX_KEY


def make_chunk(index: int, total: int = 3, payload: bytes = b"x", session_id: str = "sess-1", **kwargs: Any) -> ChunkUpload:
    return ChunkUpload(
        session_id=session_id,
        chunk_index=index,
        total_chunks=total,
        original_file_name="video.mp4",
        file_type="video/mp4",
        payload=payload,
        gym_slug="iron-temple",
        gym_name="Iron Temple",
        target_folder_id="folder-1",
        **kwargs,
    )


@pytest.fixture
def store() -> RedisChunkStore:
    return RedisChunkStore(FakeRedis())


@pytest.mark.asyncio
async def test_out_of_order_chunks_complete_session(store: RedisChunkStore) -> None:
    for index in (2, 0):
        session = await store.store_chunk(make_chunk(index, payload=f"part{index}".encode()))
        assert session.is_complete is False

    session = await store.store_chunk(make_chunk(1, payload=b"part1"))

    assert session.received_chunks == 3
    assert session.is_complete is True
    assert session.completed_at is not None
    assert await store.get_chunks("sess-1") == [b"part0", b"part1", b"part2"]


@pytest.mark.asyncio
async def test_redelivered_chunk_overwrites_payload(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0, payload=b"first"))
    session = await store.store_chunk(make_chunk(0, payload=b"second"))

    assert session.received_chunks == 1
    data = await store.redis.hgetall(store.build_data_key("sess-1"))
    assert data == {b"0": b"second"}


@pytest.mark.asyncio
async def test_first_chunk_metadata_is_kept(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0))
    await store.store_chunk(
        ChunkUpload(
            session_id="sess-1",
            chunk_index=1,
            total_chunks=3,
            original_file_name="renamed.mp4",
            file_type="video/mp4",
            payload=b"y",
        )
    )

    session = await store.get_session("sess-1")

    assert session is not None
    assert session.original_file_name == "video.mp4"
    assert session.gym_name == "Iron Temple"
    assert session.target_folder_id == "folder-1"


@pytest.mark.asyncio
async def test_get_session_returns_none_for_unknown(store: RedisChunkStore) -> None:
    assert await store.get_session("missing") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("index,total", [(3, 3), (-1, 3), (0, 0)])
async def test_invalid_index_rejected(store: RedisChunkStore, index: int, total: int) -> None:
    with pytest.raises(InvalidChunkIndex):
        await store.store_chunk(make_chunk(index, total=total))

    assert await store.get_session("sess-1") is None


@pytest.mark.asyncio
async def test_total_mismatch_rejected(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0, total=3))

    with pytest.raises(InvalidChunkIndex):
        await store.store_chunk(make_chunk(1, total=4))


@pytest.mark.asyncio
async def test_empty_payload_rejected(store: RedisChunkStore) -> None:
    with pytest.raises(EmptyPayload):
        await store.store_chunk(make_chunk(0, payload=b""))


@pytest.mark.asyncio
async def test_completed_session_refuses_more_chunks(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0, total=1))

    with pytest.raises(SessionComplete):
        await store.store_chunk(make_chunk(0, total=1, payload=b"again"))


@pytest.mark.asyncio
async def test_cleanup_removes_only_idle_sessions(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0, total=10, session_id="old"))
    await store.store_chunk(make_chunk(0, total=10, session_id="recent"))

    long_ago = (datetime.now(timezone.utc) - timedelta(hours=30)).timestamp()
    await store.redis.hset(store.build_meta_key("old"), "last_activity", repr(long_ago))
    await store.redis.zadd(SESSIONS_INDEX_KEY, {"old": long_ago})

    removed = await store.cleanup_old_sessions()

    assert removed == 1
    assert await store.get_session("old") is None
    assert await store.redis.exists(store.build_data_key("old")) == 0
    recent = await store.get_session("recent")
    assert recent is not None
    assert recent.received_chunks == 1


@pytest.mark.asyncio
async def test_cleanup_keeps_session_touched_after_index_entry(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0, total=10))
    long_ago = (datetime.now(timezone.utc) - timedelta(hours=30)).timestamp()
    # stale index score, but the session itself saw fresh activity
    await store.redis.zadd(SESSIONS_INDEX_KEY, {"sess-1": long_ago})

    removed = await store.cleanup_old_sessions()

    assert removed == 0
    assert await store.get_session("sess-1") is not None
    score = await store.redis.zscore(SESSIONS_INDEX_KEY, "sess-1")
    assert score > long_ago


@pytest.mark.asyncio
async def test_delete_session(store: RedisChunkStore) -> None:
    await store.store_chunk(make_chunk(0))

    await store.delete_session("sess-1")

    assert await store.get_session("sess-1") is None
    assert await store.redis.zscore(SESSIONS_INDEX_KEY, "sess-1") is None
