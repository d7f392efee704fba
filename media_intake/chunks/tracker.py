from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from media_intake.chunks.store import ChunkStore


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    received_chunks: int
    total_chunks: int
    is_complete: bool
    last_activity: datetime


class SessionTracker:
    """Read-side view of chunk sessions.

    Holds no state of its own: every call goes back to the store, since chunks
    for one session may land on any API instance.
    """

    def __init__(self, store: ChunkStore) -> None:
        self.store = store

    async def status(self, session_id: str) -> Optional[SessionStatus]:
        session = await self.store.get_session(session_id)
        if session is None:
            return None
        return SessionStatus(
            session_id=session.session_id,
            received_chunks=session.received_chunks,
            total_chunks=session.total_chunks,
            is_complete=session.is_complete,
            last_activity=session.last_activity,
        )
