from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TransferState(str, Enum):
    NOT_STARTED = "not_started"
    SESSION_INITIATING = "session_initiating"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PutOutcome:
    """What the remote said about one ranged PUT (or a status query)."""

    completed: bool
    bytes_confirmed: int
    destination_file_id: Optional[str] = None
    attempts: int = 1

    @property
    def continued(self) -> bool:
        return not self.completed


@dataclass
class ResumableTransfer:
    """Client-side view of one remote resumable session.

    NOT_STARTED -> SESSION_INITIATING -> TRANSFERRING -> COMPLETED, or FAILED
    from any non-terminal state. Confirmed bytes only move forward.
    """

    total_size: int
    mime: str = "application/octet-stream"
    upload_url: str = ""
    bytes_confirmed: int = 0
    state: TransferState = TransferState.NOT_STARTED
    destination_file_id: Optional[str] = None

    def initiating(self) -> None:
        self._require(TransferState.NOT_STARTED)
        self.state = TransferState.SESSION_INITIATING

    def initiated(self, upload_url: str) -> None:
        self._require(TransferState.SESSION_INITIATING)
        self.upload_url = upload_url
        self.state = TransferState.TRANSFERRING

    def record(self, outcome: PutOutcome) -> None:
        self._require(TransferState.TRANSFERRING)
        if outcome.completed:
            if not outcome.destination_file_id:
                raise ValueError("Completed transfer must carry a destination file id")
            self.bytes_confirmed = self.total_size
            self.destination_file_id = outcome.destination_file_id
            self.state = TransferState.COMPLETED
            return
        self.bytes_confirmed = max(self.bytes_confirmed, outcome.bytes_confirmed)

    def fail(self) -> None:
        if self.state is not TransferState.COMPLETED:
            self.state = TransferState.FAILED

    @property
    def done(self) -> bool:
        return self.state is TransferState.COMPLETED

    def _require(self, expected: TransferState) -> None:
        if self.state is not expected:
            raise ValueError(f"Transfer is {self.state.value}, expected {expected.value}")


def parse_range_header(value: Optional[str]) -> int:
    """Bytes confirmed from a 308 ``Range: bytes=0-N`` header (N + 1), 0 if absent."""
    if not value:
        return 0
    _, _, span = value.partition("=")
    _, _, last = span.partition("-")
    try:
        return int(last) + 1
    except ValueError:
        return 0


def content_range(start: int, end: int, total: int) -> str:
    return f"bytes {start}-{end}/{total}"
