class ChunkStoreError(Exception):
    """Base class for chunk store failures."""


class InvalidChunkIndex(ChunkStoreError):
    def __init__(self, session_id: str, chunk_index: int, total_chunks: int, reason: str = "") -> None:
        self.session_id = session_id
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks
        message = reason or f"chunk index {chunk_index} out of range for {total_chunks} chunks"
        super().__init__(f"{message} (session {session_id})")


class EmptyPayload(ChunkStoreError):
    def __init__(self, session_id: str, chunk_index: int) -> None:
        self.session_id = session_id
        self.chunk_index = chunk_index
        super().__init__(f"chunk {chunk_index} of session {session_id} has an empty payload")


class SessionComplete(ChunkStoreError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"session {session_id} is already complete and accepts no more chunks")


class StorageFailure(ChunkStoreError):
    """The durable backend failed; the original error is chained as __cause__."""
