"""Redis-backed chunk store.

Layout per session:
    chunks:session:<id>:meta   hash of file/tenant metadata + timestamps
    chunks:session:<id>:data   hash of chunk_index -> chunk bytes
    chunks:sessions            sorted set of session id scored by last activity

HSET on the data hash is naturally idempotent per index and HLEN gives the
received count, so there is no counter to race on.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Optional

from redis.exceptions import RedisError
from redis.exceptions import WatchError

from media_intake.chunks.errors import SessionComplete
from media_intake.chunks.errors import StorageFailure
from media_intake.chunks.store import DEFAULT_RETENTION
from media_intake.chunks.store import assemble
from media_intake.chunks.store import utcnow
from media_intake.chunks.store import validate_chunk
from media_intake.chunks.types import ChunkSession
from media_intake.chunks.types import ChunkUpload


logger = logging.getLogger(__name__)

SESSIONS_INDEX_KEY = "chunks:sessions"


class RedisChunkStore:
    def __init__(self, redis_client: Any, retention: timedelta = DEFAULT_RETENTION) -> None:
        self.redis = redis_client
        self.retention = retention

    def build_meta_key(self, session_id: str) -> str:
        return f"chunks:session:{session_id}:meta"

    def build_data_key(self, session_id: str) -> str:
        return f"chunks:session:{session_id}:data"

    async def store_chunk(self, chunk: ChunkUpload) -> ChunkSession:
        validate_chunk(chunk)
        meta_key = self.build_meta_key(chunk.session_id)
        data_key = self.build_data_key(chunk.session_id)
        ts = utcnow().timestamp()

        try:
            meta = _decode(await self.redis.hgetall(meta_key))
            if meta:
                if meta.get("completed_at"):
                    raise SessionComplete(chunk.session_id)
                validate_chunk(chunk, expected_total=int(meta["total_chunks"]))

            async with self.redis.pipeline(transaction=True) as pipe:
                # HSETNX keeps the first chunk's metadata authoritative
                pipe.hsetnx(meta_key, "original_file_name", chunk.original_file_name)
                pipe.hsetnx(meta_key, "file_type", chunk.file_type or "application/octet-stream")
                pipe.hsetnx(meta_key, "total_chunks", str(chunk.total_chunks))
                pipe.hsetnx(meta_key, "gym_slug", chunk.gym_slug)
                pipe.hsetnx(meta_key, "gym_name", chunk.gym_name)
                pipe.hsetnx(meta_key, "target_folder_id", chunk.target_folder_id)
                pipe.hsetnx(meta_key, "created_at", repr(ts))
                pipe.hset(meta_key, "last_activity", repr(ts))
                pipe.hset(data_key, str(chunk.chunk_index), chunk.payload)
                pipe.zadd(SESSIONS_INDEX_KEY, {chunk.session_id: ts})
                await pipe.execute()

            total = int(meta["total_chunks"]) if meta else chunk.total_chunks
            received = int(await self.redis.hlen(data_key))
            if received == total:
                await self.redis.hsetnx(meta_key, "completed_at", repr(ts))
            session = await self.get_session(chunk.session_id)
        except RedisError as e:
            logger.error(f"Failed to store chunk {chunk.chunk_index} for session {chunk.session_id}: {e}")
            raise StorageFailure(f"Failed to store chunk: {e}") from e

        if session is None:
            # swept between our write and read; the write itself succeeded
            raise StorageFailure(f"Session {chunk.session_id} disappeared while storing chunk {chunk.chunk_index}")
        logger.debug(
            f"Stored chunk {chunk.chunk_index + 1}/{chunk.total_chunks} for session {chunk.session_id} "
            f"({len(chunk.payload)} bytes, {session.received_chunks} received)"
        )
        return session

    async def get_session(self, session_id: str) -> Optional[ChunkSession]:
        try:
            meta = _decode(await self.redis.hgetall(self.build_meta_key(session_id)))
            if not meta or "total_chunks" not in meta:
                return None
            received = int(await self.redis.hlen(self.build_data_key(session_id)))
        except RedisError as e:
            raise StorageFailure(f"Failed to get session: {e}") from e

        return ChunkSession(
            session_id=session_id,
            original_file_name=meta.get("original_file_name", ""),
            file_type=meta.get("file_type", "application/octet-stream"),
            total_chunks=int(meta["total_chunks"]),
            received_chunks=received,
            gym_slug=meta.get("gym_slug", ""),
            gym_name=meta.get("gym_name", ""),
            target_folder_id=meta.get("target_folder_id", ""),
            created_at=_from_ts(meta.get("created_at")),
            last_activity=_from_ts(meta.get("last_activity")),
            completed_at=_from_ts(meta["completed_at"]) if meta.get("completed_at") else None,
        )

    async def get_chunks(self, session_id: str) -> list[bytes]:
        try:
            total_raw = await self.redis.hget(self.build_meta_key(session_id), "total_chunks")
            raw = await self.redis.hgetall(self.build_data_key(session_id))
        except RedisError as e:
            raise StorageFailure(f"Failed to get session chunks: {e}") from e
        if total_raw is None:
            return []
        indexed = {int(k): bytes(v) for k, v in raw.items()}
        return assemble(session_id, int(total_raw), indexed)

    async def delete_session(self, session_id: str) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self.build_meta_key(session_id), self.build_data_key(session_id))
                pipe.zrem(SESSIONS_INDEX_KEY, session_id)
                await pipe.execute()
        except RedisError as e:
            raise StorageFailure(f"Failed to delete session: {e}") from e
        logger.info(f"Cleaned up session: {session_id}")

    async def cleanup_old_sessions(self, now: Optional[datetime] = None) -> int:
        cutoff = ((now or utcnow()) - self.retention).timestamp()
        removed = 0
        try:
            candidates = await self.redis.zrangebyscore(SESSIONS_INDEX_KEY, "-inf", f"({cutoff}")
            for raw_id in candidates:
                session_id = raw_id.decode() if isinstance(raw_id, bytes) else str(raw_id)
                if await self._delete_if_idle(session_id, cutoff):
                    removed += 1
        except RedisError as e:
            raise StorageFailure(f"Failed to cleanup old sessions: {e}") from e

        logger.info(f"Cleaned up {removed} idle chunk sessions (cutoff={cutoff:.0f})")
        return removed

    async def _delete_if_idle(self, session_id: str, cutoff: float) -> bool:
        """Delete one session unless it saw activity after the sweep started.

        WATCH on the meta hash aborts the delete if a chunk write lands between
        the last-activity read and EXEC.
        """
        meta_key = self.build_meta_key(session_id)
        data_key = self.build_data_key(session_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(meta_key)
                last_raw = await pipe.hget(meta_key, "last_activity")
                if last_raw is not None and float(last_raw) >= cutoff:
                    await pipe.zadd(SESSIONS_INDEX_KEY, {session_id: float(last_raw)})
                    return False
                pipe.multi()
                pipe.delete(meta_key, data_key)
                pipe.zrem(SESSIONS_INDEX_KEY, session_id)
                await pipe.execute()
            except WatchError:
                logger.info(f"Session {session_id} received a chunk during cleanup, keeping it")
                return False
        logger.debug(f"Removed idle session {session_id}")
        return True


def _decode(raw: dict) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in (raw or {}).items():
        key = k.decode() if isinstance(k, bytes) else str(k)
        out[key] = v.decode() if isinstance(v, bytes) else str(v)
    return out


def _from_ts(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromtimestamp(float(raw), tz=timezone.utc)
