"""Postgres-backed chunk store.

Chunk bytes live in ``file_chunks`` keyed by (session_id, chunk_index); one
``chunk_sessions`` row carries the file/tenant metadata and last activity.
Every write is an upsert, so re-delivered chunks overwrite instead of
duplicating, and received counts come from COUNT(*) over stored rows.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta
from typing import Any
from typing import Optional

import asyncpg

from media_intake.chunks.errors import SessionComplete
from media_intake.chunks.errors import StorageFailure
from media_intake.chunks.store import DEFAULT_RETENTION
from media_intake.chunks.store import assemble
from media_intake.chunks.store import utcnow
from media_intake.chunks.store import validate_chunk
from media_intake.chunks.types import ChunkSession
from media_intake.chunks.types import ChunkUpload
from media_intake.utils import get_query


logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgresChunkStore:
    def __init__(self, pool: Any, retention: timedelta = DEFAULT_RETENTION) -> None:
        self.pool = pool
        self.retention = retention

    async def store_chunk(self, chunk: ChunkUpload) -> ChunkSession:
        validate_chunk(chunk)
        now = utcnow()
        try:
            async with self.pool.acquire() as conn, conn.transaction():
                session_row = await conn.fetchrow(
                    get_query("upsert_chunk_session"),
                    chunk.session_id,
                    chunk.original_file_name,
                    chunk.file_type or "application/octet-stream",
                    chunk.total_chunks,
                    chunk.gym_slug,
                    chunk.gym_name,
                    chunk.target_folder_id,
                    now,
                )
                if session_row["completed_at"] is not None:
                    raise SessionComplete(chunk.session_id)
                validate_chunk(chunk, expected_total=int(session_row["total_chunks"]))

                await conn.execute(
                    get_query("upsert_file_chunk"),
                    chunk.session_id,
                    chunk.chunk_index,
                    chunk.payload,
                    len(chunk.payload),
                    now,
                )
                await conn.execute(get_query("mark_chunk_session_complete"), chunk.session_id, now)
                row = await conn.fetchrow(get_query("get_chunk_session"), chunk.session_id)
        except _BACKEND_ERRORS as e:
            logger.error(f"Failed to store chunk {chunk.chunk_index} for session {chunk.session_id}: {e}")
            raise StorageFailure(f"Failed to store chunk: {e}") from e

        session = _row_to_session(row)
        logger.debug(
            f"Stored chunk {chunk.chunk_index + 1}/{chunk.total_chunks} for session {chunk.session_id} "
            f"({len(chunk.payload)} bytes, {session.received_chunks} received)"
        )
        return session

    async def get_session(self, session_id: str) -> Optional[ChunkSession]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(get_query("get_chunk_session"), session_id)
        except _BACKEND_ERRORS as e:
            raise StorageFailure(f"Failed to get session: {e}") from e
        if row is None:
            return None
        return _row_to_session(row)

    async def get_chunks(self, session_id: str) -> list[bytes]:
        try:
            async with self.pool.acquire() as conn:
                total = await conn.fetchval(get_query("get_chunk_session_total"), session_id)
                rows = await conn.fetch(get_query("list_session_chunks"), session_id)
        except _BACKEND_ERRORS as e:
            raise StorageFailure(f"Failed to get session chunks: {e}") from e
        if total is None:
            return []
        return assemble(session_id, int(total), {int(r["chunk_index"]): bytes(r["chunk_data"]) for r in rows})

    async def delete_session(self, session_id: str) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(get_query("delete_chunk_session"), session_id)
        except _BACKEND_ERRORS as e:
            raise StorageFailure(f"Failed to delete session: {e}") from e
        logger.info(f"Cleaned up session: {session_id}")

    async def cleanup_old_sessions(self, now: Optional[datetime] = None) -> int:
        # The WHERE clause is re-evaluated against the committed row at delete
        # time, so a session touched by a concurrent chunk write survives.
        cutoff = (now or utcnow()) - self.retention
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(get_query("cleanup_idle_chunk_sessions"), cutoff)
        except _BACKEND_ERRORS as e:
            raise StorageFailure(f"Failed to cleanup old sessions: {e}") from e
        removed = len(rows)
        logger.info(f"Cleaned up {removed} idle chunk sessions older than {cutoff.isoformat()}")
        return removed


def _row_to_session(row: Any) -> ChunkSession:
    return ChunkSession(
        session_id=row["session_id"],
        original_file_name=row["original_file_name"],
        file_type=row["file_type"],
        total_chunks=int(row["total_chunks"]),
        received_chunks=int(row["received_chunks"]),
        gym_slug=row["gym_slug"],
        gym_name=row["gym_name"],
        target_folder_id=row["target_folder_id"],
        created_at=row["created_at"],
        last_activity=row["last_activity"],
        completed_at=row["completed_at"],
    )
