from .errors import ChunkStoreError
from .errors import EmptyPayload
from .errors import InvalidChunkIndex
from .errors import SessionComplete
from .errors import StorageFailure
from .factory import build_chunk_store
from .postgres_store import PostgresChunkStore
from .redis_store import RedisChunkStore
from .store import ChunkStore
from .tracker import SessionStatus
from .tracker import SessionTracker
from .types import ChunkSession
from .types import ChunkUpload


__all__ = [
    "ChunkStore",
    "build_chunk_store",
    "PostgresChunkStore",
    "RedisChunkStore",
    "SessionTracker",
    "SessionStatus",
    "ChunkSession",
    "ChunkUpload",
    "ChunkStoreError",
    "InvalidChunkIndex",
    "EmptyPayload",
    "SessionComplete",
    "StorageFailure",
]
