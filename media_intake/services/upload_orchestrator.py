"""HTTP-facing upload flows.

Protocol A buffers client chunks in the chunk store until every index has
arrived. Protocol B hands the client a resumable session on cold storage and
proxies its ranged PUTs. Both end in a part record against an upload's slot.
Every operation returns ``Ok`` or ``Err``; nothing here raises for an
expected failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from media_intake.chunks.errors import ChunkStoreError
from media_intake.chunks.store import ChunkStore
from media_intake.chunks.tracker import SessionTracker
from media_intake.chunks.types import ChunkUpload
from media_intake.models.upload_file import UploadFileDB
from media_intake.orm.transaction import transactional
from media_intake.repositories.upload_file_repository import UploadFileRepository
from media_intake.repositories.upload_repository import UploadRepository
from media_intake.result import Err
from media_intake.result import ErrorKind
from media_intake.result import Ok
from media_intake.result import Result
from media_intake.services.error_mapping import chunk_error
from media_intake.services.error_mapping import database_error
from media_intake.services.error_mapping import missing
from media_intake.services.error_mapping import storage_error
from media_intake.storage.drive_client import ColdStorageBridge
from media_intake.storage.drive_client import Source
from media_intake.storage.errors import AuthFailure
from media_intake.storage.errors import ColdStorageError
from media_intake.storage.transfer import PutOutcome


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkAccepted:
    session_id: str
    chunk_index: int
    received_chunks: int
    total_chunks: int
    is_complete: bool


@dataclass(frozen=True)
class ChunkSessionView:
    session_id: str
    metadata: dict[str, Any]
    received_chunks: int
    total_chunks: int
    is_complete: bool
    last_activity: datetime


@dataclass(frozen=True)
class ResumableStart:
    upload_url: Optional[str] = None
    deduped: bool = False
    file_id: Optional[str] = None


@dataclass(frozen=True)
class PartRecord:
    upload_id: str
    slot: str
    file_id: str
    name: str
    size_bytes: Optional[int]
    mime: str


@dataclass(frozen=True)
class ReconstructedFile:
    session_id: str
    file_id: str
    name: str
    size_bytes: int
    mime: str
    deduped: bool = False
    chunk_count: int = 0
    part: Optional[PartRecord] = None


def parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class UploadOrchestrator:
    def __init__(
        self,
        store: ChunkStore,
        bridge: ColdStorageBridge,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        slot_names: Optional[list[str]] = None,
        max_upload_bytes: Optional[int] = None,
        reconstruct_max_bytes: Optional[int] = None,
    ) -> None:
        self.store = store
        self.tracker = SessionTracker(store)
        self.bridge = bridge
        self.session_factory = session_factory
        self.slot_names = slot_names
        self.max_upload_bytes = max_upload_bytes
        self.reconstruct_max_bytes = reconstruct_max_bytes

    # Protocol A

    async def accept_chunk(
        self,
        session_id: Optional[str],
        chunk_index: Any,
        total_chunks: Any,
        original_file_name: Optional[str],
        file_type: Optional[str],
        payload: Optional[bytes],
        gym_slug: Optional[str] = None,
        gym_name: Optional[str] = None,
        target_folder_id: Optional[str] = None,
    ) -> Result[ChunkAccepted]:
        index = parse_int(chunk_index)
        total = parse_int(total_chunks)
        absent = [
            name
            for name, value in (
                ("sessionId", session_id),
                ("chunkIndex", index),
                ("totalChunks", total),
                ("originalFileName", original_file_name),
                ("chunk", payload),
            )
            if value is None or value == ""
        ]
        if absent:
            return missing(*absent)
        assert session_id and index is not None and total is not None and payload is not None

        chunk = ChunkUpload(
            session_id=session_id,
            chunk_index=index,
            total_chunks=total,
            original_file_name=original_file_name or "",
            file_type=file_type or "application/octet-stream",
            payload=payload,
            gym_slug=gym_slug or "",
            gym_name=gym_name or "",
            target_folder_id=target_folder_id or "",
        )
        try:
            session = await self.store.store_chunk(chunk)
        except ChunkStoreError as e:
            logger.warning(f"Rejected chunk {index} for session {session_id}: {e}")
            return chunk_error(e)

        logger.info(
            f"Chunk {index + 1}/{total} stored for session {session_id} "
            f"({session.received_chunks}/{session.total_chunks} received)"
        )
        return Ok(
            ChunkAccepted(
                session_id=session_id,
                chunk_index=index,
                received_chunks=session.received_chunks,
                total_chunks=session.total_chunks,
                is_complete=session.is_complete,
            )
        )

    async def chunk_status(self, session_id: Optional[str]) -> Result[ChunkSessionView]:
        if not session_id:
            return missing("sessionId")
        try:
            session = await self.store.get_session(session_id)
        except ChunkStoreError as e:
            return chunk_error(e)
        if session is None:
            return Err(ErrorKind.SESSION_NOT_FOUND, f"Session {session_id} not found", {"sessionId": session_id})
        return Ok(
            ChunkSessionView(
                session_id=session_id,
                metadata=session.metadata(),
                received_chunks=session.received_chunks,
                total_chunks=session.total_chunks,
                is_complete=session.is_complete,
                last_activity=session.last_activity,
            )
        )

    async def reconstruct(
        self, session_id: Optional[str], upload_id: Optional[str] = None, slot: Optional[str] = None
    ) -> Result[ReconstructedFile]:
        """Ship a fully buffered Protocol A session to cold storage and drop the buffer."""
        if not session_id:
            return missing("sessionId")
        if slot and self.slot_names and slot not in self.slot_names:
            return Err(ErrorKind.INVALID_SLOT, f"Unknown slot {slot!r}", {"allowed": self.slot_names})

        try:
            status = await self.tracker.status(session_id)
            if status is None:
                return Err(ErrorKind.SESSION_NOT_FOUND, f"Session {session_id} not found", {"sessionId": session_id})
            if not status.is_complete:
                return Err(
                    ErrorKind.SESSION_INCOMPLETE,
                    f"Session {session_id} has {status.received_chunks} of {status.total_chunks} chunks",
                    {"receivedChunks": status.received_chunks, "totalChunks": status.total_chunks},
                )
            session = await self.store.get_session(session_id)
            chunks = await self.store.get_chunks(session_id)
        except ChunkStoreError as e:
            return chunk_error(e)
        if session is None:
            # swept between the status check and the read
            return Err(ErrorKind.SESSION_NOT_FOUND, f"Session {session_id} not found", {"sessionId": session_id})

        if not session.target_folder_id:
            return missing("targetFolderId")
        data = b"".join(chunks)
        if self.reconstruct_max_bytes is not None and len(data) > self.reconstruct_max_bytes:
            return Err(
                ErrorKind.FILE_TOO_LARGE,
                f"Reconstructed file is {len(data)} bytes, limit is {self.reconstruct_max_bytes}",
                {"sizeBytes": len(data), "maxBytes": self.reconstruct_max_bytes},
            )

        name, mime = session.original_file_name, session.file_type
        deduped = False
        try:
            existing = await self.bridge.find_file(session.target_folder_id, name, len(data))
            if existing is not None:
                file_id, deduped = existing.id, True
                logger.info(f"Reconstruct of {session_id} deduped against existing file {file_id}")
            else:
                transfer = await self.bridge.transfer(data, name, mime, len(data), session.target_folder_id)
                assert transfer.destination_file_id is not None
                file_id = transfer.destination_file_id
        except ColdStorageError as e:
            logger.error(f"Reconstruct of session {session_id} failed: {e}")
            return storage_error(e)

        part = None
        if upload_id and slot:
            recorded = await self.record_part(upload_id, slot, file_id, name, len(data), mime)
            if isinstance(recorded, Err):
                return recorded
            part = recorded.value

        try:
            await self.store.delete_session(session_id)
        except ChunkStoreError as e:
            # the file is already safe in cold storage; the sweep will get the buffer later
            logger.warning(f"Could not delete reconstructed session {session_id}: {e}")

        return Ok(
            ReconstructedFile(
                session_id=session_id,
                file_id=file_id,
                name=name,
                size_bytes=len(data),
                mime=mime,
                deduped=deduped,
                chunk_count=len(chunks),
                part=part,
            )
        )

    # Protocol B

    async def start_resumable(
        self,
        filename: Optional[str],
        mime: Optional[str],
        size_bytes: Any,
        parent_id: Optional[str],
    ) -> Result[ResumableStart]:
        size = parse_int(size_bytes)
        absent = [n for n, v in (("filename", filename), ("sizeBytes", size), ("parentId", parent_id)) if v in (None, "")]
        if absent:
            return missing(*absent)
        assert filename and parent_id and size is not None
        if size <= 0:
            return Err(ErrorKind.INVALID_RANGE, "sizeBytes must be > 0", {"sizeBytes": size})

        try:
            existing = await self.bridge.find_file(parent_id, filename, size)
        except AuthFailure as e:
            return storage_error(e)
        except ColdStorageError as e:
            # dedupe is best effort; a failed lookup must not block the upload
            logger.warning(f"Dedupe check for {filename!r} in {parent_id} failed, continuing: {e}")
            existing = None
        if existing is not None:
            logger.info(f"Deduped {filename!r} ({size} bytes) against existing file {existing.id}")
            return Ok(ResumableStart(deduped=True, file_id=existing.id))

        try:
            upload_url = await self.bridge.init_session(filename, mime or "application/octet-stream", size, parent_id)
        except ColdStorageError as e:
            logger.error(f"Failed to start resumable upload for {filename!r}: {e}")
            return storage_error(e)
        return Ok(ResumableStart(upload_url=upload_url))

    async def put_range(
        self,
        upload_url: Optional[str],
        start: Any,
        end: Any,
        total: Any,
        payload: Optional[bytes],
        mime: Optional[str] = None,
    ) -> Result[PutOutcome]:
        first, last, size = parse_int(start), parse_int(end), parse_int(total)
        absent = [
            n
            for n, v in (("uploadUrl", upload_url), ("start", first), ("end", last), ("total", size), ("chunkBase64", payload))
            if v in (None, "", b"")
        ]
        if absent:
            return missing(*absent)
        assert upload_url and first is not None and last is not None and size is not None and payload

        if first < 0 or last < first or last >= size or last - first + 1 != len(payload):
            return Err(
                ErrorKind.INVALID_RANGE,
                f"Range {first}-{last}/{size} does not match a {len(payload)} byte payload",
                {"start": first, "end": last, "total": size, "payloadBytes": len(payload)},
            )

        try:
            outcome = await self.bridge.put(upload_url, payload, first, size, mime or "application/octet-stream")
        except ColdStorageError as e:
            logger.error(f"Ranged PUT {first}-{last}/{size} failed: {e}")
            return storage_error(e)
        return Ok(outcome)

    async def resumable_status(self, upload_url: Optional[str], total: Any) -> Result[PutOutcome]:
        """How far the remote got with a session, so a client can resume after a crash."""
        size = parse_int(total)
        absent = [n for n, v in (("uploadUrl", upload_url), ("total", size)) if v in (None, "")]
        if absent:
            return missing(*absent)
        assert upload_url and size is not None
        if size <= 0:
            return Err(ErrorKind.INVALID_RANGE, "total must be > 0", {"total": size})

        try:
            outcome = await self.bridge.query_status(upload_url, size)
        except ColdStorageError as e:
            logger.error(f"Status query for resumable session failed: {e}")
            return storage_error(e)
        return Ok(outcome)

    async def upload_whole_file(
        self,
        upload_id: str,
        slot: str,
        source: Source,
        filename: Optional[str],
        mime: Optional[str],
        size_bytes: Any,
        folder_id: Optional[str],
    ) -> Result[PartRecord]:
        """Stream one file for a slot through sequential ranges, then record it."""
        size = parse_int(size_bytes)
        absent = [n for n, v in (("filename", filename), ("sizeBytes", size), ("x-slot-folder-id", folder_id)) if v in (None, "")]
        if absent:
            return missing(*absent)
        assert filename and folder_id and size is not None
        if self.slot_names and slot not in self.slot_names:
            return Err(ErrorKind.INVALID_SLOT, f"Unknown slot {slot!r}", {"allowed": self.slot_names})
        if self.max_upload_bytes is not None and size > self.max_upload_bytes:
            return Err(
                ErrorKind.FILE_TOO_LARGE,
                f"File is {size} bytes, limit is {self.max_upload_bytes}",
                {"sizeBytes": size, "maxBytes": self.max_upload_bytes},
            )

        exists = await self._upload_exists(upload_id)
        if isinstance(exists, Err):
            return exists

        mime = mime or "application/octet-stream"
        try:
            transfer = await self.bridge.transfer(source, filename, mime, size, folder_id)
        except ColdStorageError as e:
            logger.error(f"Upload of {filename!r} for {upload_id}/{slot} failed: {e}")
            return storage_error(e)
        assert transfer.destination_file_id is not None
        return await self.record_part(upload_id, slot, transfer.destination_file_id, filename, size, mime)

    async def record_part(
        self,
        upload_id: Optional[str],
        slot: Optional[str],
        file_id: Optional[str],
        name: Optional[str],
        size_bytes: Any = None,
        mime: Optional[str] = None,
    ) -> Result[PartRecord]:
        absent = [n for n, v in (("uploadId", upload_id), ("slot", slot), ("fileId", file_id), ("name", name)) if not v]
        if absent:
            return missing(*absent)
        assert upload_id and slot and file_id and name
        if self.slot_names and slot not in self.slot_names:
            return Err(ErrorKind.INVALID_SLOT, f"Unknown slot {slot!r}", {"allowed": self.slot_names})
        if self.session_factory is None:
            return Err(ErrorKind.DATABASE_NOT_CONFIGURED, "Database not configured")

        record = PartRecord(
            upload_id=upload_id,
            slot=slot,
            file_id=file_id,
            name=name,
            size_bytes=parse_int(size_bytes),
            mime=mime or "application/octet-stream",
        )
        try:
            async with self.session_factory() as session, transactional(session):
                if await UploadRepository(session).get_by_id(upload_id) is None:
                    return Err(ErrorKind.UPLOAD_NOT_FOUND, f"Upload {upload_id} not found", {"uploadId": upload_id})
                await UploadFileRepository(session).upsert(
                    UploadFileDB(
                        upload_id=record.upload_id,
                        slot_name=record.slot,
                        destination_file_id=record.file_id,
                        name=record.name,
                        size_bytes=record.size_bytes,
                        mime=record.mime,
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record part {upload_id}/{slot}: {e}")
            return database_error(e)

        logger.info(f"Recorded part {upload_id}/{slot} -> {file_id}")
        return Ok(record)

    async def _upload_exists(self, upload_id: str) -> Result[bool]:
        if self.session_factory is None:
            return Err(ErrorKind.DATABASE_NOT_CONFIGURED, "Database not configured")
        try:
            async with self.session_factory() as session:
                upload = await UploadRepository(session).get_by_id(upload_id)
        except SQLAlchemyError as e:
            return database_error(e)
        if upload is None:
            return Err(ErrorKind.UPLOAD_NOT_FOUND, f"Upload {upload_id} not found", {"uploadId": upload_id})
        return Ok(True)
