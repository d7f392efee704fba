"""Translate component exceptions into tagged ``Err`` values."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from media_intake.chunks.errors import ChunkStoreError
from media_intake.chunks.errors import EmptyPayload
from media_intake.chunks.errors import InvalidChunkIndex
from media_intake.chunks.errors import SessionComplete
from media_intake.result import Err
from media_intake.result import ErrorKind
from media_intake.storage.errors import AuthFailure
from media_intake.storage.errors import ColdStorageError
from media_intake.storage.errors import InitFailure
from media_intake.storage.errors import RemoteError
from media_intake.storage.errors import RetriesExhausted


def chunk_error(e: ChunkStoreError) -> Err:
    if isinstance(e, InvalidChunkIndex):
        return Err(
            ErrorKind.INVALID_CHUNK_INDEX,
            str(e),
            {"sessionId": e.session_id, "chunkIndex": e.chunk_index, "totalChunks": e.total_chunks},
        )
    if isinstance(e, EmptyPayload):
        return Err(ErrorKind.EMPTY_PAYLOAD, str(e), {"sessionId": e.session_id, "chunkIndex": e.chunk_index})
    if isinstance(e, SessionComplete):
        return Err(ErrorKind.SESSION_COMPLETE, str(e), {"sessionId": e.session_id})
    return Err(ErrorKind.STORAGE_FAILURE, str(e))


def storage_error(e: ColdStorageError) -> Err:
    if isinstance(e, AuthFailure):
        return Err(ErrorKind.AUTH_FAILURE, str(e), {"strategies": e.attempts})

    details = {}
    if isinstance(e, RemoteError):
        details = {"status": e.status_code, "body": e.body}
    if isinstance(e, InitFailure):
        return Err(ErrorKind.INIT_FAILURE, str(e), details)
    if isinstance(e, RetriesExhausted):
        return Err(ErrorKind.TRANSIENT_FAILURE, str(e), {**details, "attempts": e.attempts})
    return Err(ErrorKind.PERMANENT_FAILURE, str(e), details)


def database_error(e: SQLAlchemyError) -> Err:
    return Err(ErrorKind.STORAGE_FAILURE, f"Database error: {type(e).__name__}", {"reason": str(e).splitlines()[0]})


def missing(*names: str) -> Err:
    return Err(ErrorKind.MISSING_FIELD, f"{', '.join(names)} required", {"fields": list(names)})
