from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from typing import Optional


@dataclass(frozen=True)
class ChunkUpload:
    """One slice of one client file, as received from the chunk endpoint."""

    session_id: str
    chunk_index: int
    total_chunks: int
    original_file_name: str
    file_type: str
    payload: bytes
    gym_slug: str = ""
    gym_name: str = ""
    target_folder_id: str = ""


@dataclass(frozen=True)
class ChunkSession:
    session_id: str
    original_file_name: str
    file_type: str
    total_chunks: int
    received_chunks: int
    gym_slug: str
    gym_name: str
    target_folder_id: str
    created_at: datetime
    last_activity: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.total_chunks > 0 and self.received_chunks == self.total_chunks

    def metadata(self) -> dict[str, Any]:
        return {
            "originalFileName": self.original_file_name,
            "fileType": self.file_type,
            "totalChunks": self.total_chunks,
            "gymSlug": self.gym_slug,
            "gymName": self.gym_name,
            "targetFolderId": self.target_folder_id,
            "createdAt": self.created_at.isoformat(),
        }
