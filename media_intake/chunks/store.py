from __future__ import annotations

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Optional
from typing import Protocol

from media_intake.chunks.errors import EmptyPayload
from media_intake.chunks.errors import InvalidChunkIndex
from media_intake.chunks.types import ChunkSession
from media_intake.chunks.types import ChunkUpload


DEFAULT_RETENTION = timedelta(hours=24)


class ChunkStore(Protocol):
    """Durable buffer for chunked uploads keyed by (session_id, chunk_index).

    Received counts are always derived from what is stored, never kept as a
    separate counter, so parallel chunk requests for one session cannot lose
    updates.
    """

    async def store_chunk(self, chunk: ChunkUpload) -> ChunkSession: ...

    async def get_session(self, session_id: str) -> Optional[ChunkSession]: ...

    async def get_chunks(self, session_id: str) -> list[bytes]: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def cleanup_old_sessions(self, now: Optional[datetime] = None) -> int: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_chunk(chunk: ChunkUpload, expected_total: Optional[int] = None) -> None:
    """Reject chunks that can never be part of a valid session."""
    if chunk.total_chunks <= 0:
        raise InvalidChunkIndex(chunk.session_id, chunk.chunk_index, chunk.total_chunks, "totalChunks must be > 0")
    if chunk.chunk_index < 0 or chunk.chunk_index >= chunk.total_chunks:
        raise InvalidChunkIndex(chunk.session_id, chunk.chunk_index, chunk.total_chunks)
    if expected_total is not None and expected_total != chunk.total_chunks:
        raise InvalidChunkIndex(
            chunk.session_id,
            chunk.chunk_index,
            chunk.total_chunks,
            f"totalChunks {chunk.total_chunks} does not match session total {expected_total}",
        )
    if not chunk.payload:
        raise EmptyPayload(chunk.session_id, chunk.chunk_index)


def assemble(session_id: str, total_chunks: int, indexed: dict[int, bytes]) -> list[bytes]:
    """Order stored chunks by index, refusing to return a set with holes."""
    missing = [i for i in range(total_chunks) if i not in indexed]
    if missing:
        raise InvalidChunkIndex(
            session_id, missing[0], total_chunks, f"missing {len(missing)} chunk(s), first gap at {missing[0]}"
        )
    return [indexed[i] for i in range(total_chunks)]
