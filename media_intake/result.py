"""Tagged results returned by the upload orchestrator and finalizer.

Callers branch on ``isinstance(result, Err)`` and on ``Err.kind.retryable``
instead of parsing exception messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any
from typing import Generic
from typing import TypeVar
from typing import Union


T = TypeVar("T")


class ErrorKind(str, Enum):
    # validation
    MISSING_FIELD = "MissingField"
    INVALID_CHUNK_INDEX = "InvalidChunkIndex"
    EMPTY_PAYLOAD = "EmptyPayload"
    INVALID_SLOT = "InvalidSlot"
    FILE_TOO_LARGE = "FileTooLarge"
    INVALID_RANGE = "InvalidRange"
    # lookups / state
    SESSION_NOT_FOUND = "SessionNotFound"
    SESSION_COMPLETE = "SessionComplete"
    SESSION_INCOMPLETE = "SessionIncomplete"
    UPLOAD_NOT_FOUND = "UploadNotFound"
    INCOMPLETE_PART_SET = "IncompletePartSet"
    ALREADY_FINALIZED = "AlreadyFinalized"
    # remote
    AUTH_FAILURE = "AuthFailure"
    INIT_FAILURE = "InitFailure"
    TRANSIENT_FAILURE = "TransientFailure"
    PERMANENT_FAILURE = "PermanentFailure"
    MANIFEST_WRITE_FAILURE = "ManifestWriteFailure"
    # local infrastructure
    STORAGE_FAILURE = "StorageFailure"
    DATABASE_NOT_CONFIGURED = "DatabaseNotConfigured"
    STORAGE_NOT_CONFIGURED = "StorageNotConfigured"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES.get(self, 500)

    @property
    def retryable(self) -> bool:
        """Whether repeating the same call later can succeed without changes."""
        return self in _RETRYABLE


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.MISSING_FIELD: 400,
    ErrorKind.INVALID_CHUNK_INDEX: 400,
    ErrorKind.EMPTY_PAYLOAD: 400,
    ErrorKind.INVALID_SLOT: 400,
    ErrorKind.INVALID_RANGE: 400,
    ErrorKind.FILE_TOO_LARGE: 413,
    ErrorKind.SESSION_NOT_FOUND: 404,
    ErrorKind.UPLOAD_NOT_FOUND: 404,
    ErrorKind.SESSION_COMPLETE: 409,
    ErrorKind.SESSION_INCOMPLETE: 409,
    ErrorKind.INCOMPLETE_PART_SET: 409,
    ErrorKind.ALREADY_FINALIZED: 409,
}

_RETRYABLE = frozenset(
    {
        ErrorKind.SESSION_INCOMPLETE,
        ErrorKind.INCOMPLETE_PART_SET,
        ErrorKind.TRANSIENT_FAILURE,
        ErrorKind.STORAGE_FAILURE,
    }
)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


Result = Union[Ok[T], Err]
