from typing import Any

import pytest
from fakeredis.aioredis import FakeRedis

from media_intake.chunks import ChunkUpload
from media_intake.chunks import RedisChunkStore
from media_intake.chunks import SessionTracker


def chunk(index: int, total: int = 3, **kwargs: Any) -> ChunkUpload:
    return ChunkUpload(
        session_id="sess-1",
        chunk_index=index,
        total_chunks=total,
        original_file_name="clip.mov",
        file_type="video/quicktime",
        payload=b"data",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_status_unknown_session_is_none() -> None:
    tracker = SessionTracker(RedisChunkStore(FakeRedis()))

    assert await tracker.status("missing") is None


@pytest.mark.asyncio
async def test_status_tracks_distinct_indices() -> None:
    store = RedisChunkStore(FakeRedis())
    tracker = SessionTracker(store)

    await store.store_chunk(chunk(1))
    await store.store_chunk(chunk(1))
    status = await tracker.status("sess-1")

    assert status is not None
    assert status.received_chunks == 1
    assert status.total_chunks == 3
    assert status.is_complete is False

    await store.store_chunk(chunk(0))
    await store.store_chunk(chunk(2))
    status = await tracker.status("sess-1")

    assert status is not None
    assert status.received_chunks == 3
    assert status.is_complete is True


@pytest.mark.asyncio
async def test_status_is_recomputed_from_store() -> None:
    store = RedisChunkStore(FakeRedis())
    # two trackers stand in for two API instances sharing one store
    first, second = SessionTracker(store), SessionTracker(store)

    await store.store_chunk(chunk(0, total=2))
    assert (await first.status("sess-1")).received_chunks == 1  # type: ignore[union-attr]

    await store.store_chunk(chunk(1, total=2))
    status = await second.status("sess-1")
    assert status is not None and status.is_complete
    assert (await first.status("sess-1")).is_complete  # type: ignore[union-attr]
