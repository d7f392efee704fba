"""Finalization of an upload unit.

Once every expected slot has a part record, the manifest is written as
``upload.json`` next to the files and recorded on the upload row. The row's
``completed_at`` is set with a conditional update, so only one finalize can
win for a given upload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from media_intake.models.upload import UploadDB
from media_intake.models.upload_file import UploadFileDB
from media_intake.orm.transaction import transactional
from media_intake.repositories.upload_file_repository import UploadFileRepository
from media_intake.repositories.upload_repository import UploadRepository
from media_intake.result import Err
from media_intake.result import ErrorKind
from media_intake.result import Ok
from media_intake.result import Result
from media_intake.services.error_mapping import database_error
from media_intake.services.error_mapping import storage_error
from media_intake.storage.drive_client import ColdStorageBridge
from media_intake.storage.errors import AuthFailure
from media_intake.storage.errors import ColdStorageError
from media_intake.storage.errors import RetriesExhausted


logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "upload.json"


@dataclass(frozen=True)
class ManifestPart:
    slot: str
    name: str
    size_bytes: Optional[int]
    mime: str
    destination_file_id: str


@dataclass(frozen=True)
class UploadManifest:
    upload_id: str
    created_at: datetime
    parts: list[ManifestPart] = field(default_factory=list)
    gym_name: str = ""
    folder_structure: dict[str, Any] = field(default_factory=dict)

    @property
    def total_files(self) -> int:
        return len(self.parts)

    @classmethod
    def build(cls, upload: UploadDB, parts: list[UploadFileDB], now: Optional[datetime] = None) -> "UploadManifest":
        return cls(
            upload_id=upload.upload_id,
            created_at=now or datetime.now(timezone.utc),
            gym_name=upload.gym_name,
            folder_structure=dict(upload.folder_structure or {}),
            parts=[
                ManifestPart(
                    slot=p.slot_name,
                    name=p.name,
                    size_bytes=p.size_bytes,
                    mime=p.mime,
                    destination_file_id=p.destination_file_id,
                )
                for p in parts
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "gymName": self.gym_name,
            "createdAt": self.created_at.isoformat(),
            "totalFiles": self.total_files,
            "status": "completed",
            "folderStructure": self.folder_structure,
            "parts": [
                {
                    "slot": p.slot,
                    "name": p.name,
                    "sizeBytes": p.size_bytes,
                    "mime": p.mime,
                    "fileId": p.destination_file_id,
                }
                for p in self.parts
            ],
        }


@dataclass(frozen=True)
class ManifestSummary:
    upload_id: str
    manifest_file_id: str
    manifest_file_name: str
    total_files: int
    manifest: dict[str, Any]


class Finalizer:
    def __init__(
        self,
        bridge: ColdStorageBridge,
        session_factory: Optional[async_sessionmaker[AsyncSession]],
    ) -> None:
        self.bridge = bridge
        self.session_factory = session_factory

    async def finalize(self, upload_id: str, now: Optional[datetime] = None) -> Result[ManifestSummary]:
        if self.session_factory is None:
            return Err(ErrorKind.DATABASE_NOT_CONFIGURED, "Database not configured")

        try:
            async with self.session_factory() as session:
                upload = await UploadRepository(session).get_by_id(upload_id)
                if upload is None:
                    return Err(ErrorKind.UPLOAD_NOT_FOUND, f"Upload {upload_id} not found", {"uploadId": upload_id})
                if upload.is_finalized:
                    return _already_finalized(upload_id, upload.manifest_file_id)
                parts = await UploadFileRepository(session).list_by_upload(upload_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read upload {upload_id}: {e}")
            return database_error(e)

        present = {p.slot_name for p in parts}
        missing_slots = [s for s in upload.expected_slots if s not in present]
        if missing_slots or not parts:
            return Err(
                ErrorKind.INCOMPLETE_PART_SET,
                f"Upload {upload_id} is missing parts for {len(missing_slots) or 'all'} slot(s)",
                {"uploadId": upload_id, "missingSlots": missing_slots or list(upload.expected_slots)},
            )
        if not upload.destination_folder_id:
            return Err(
                ErrorKind.MANIFEST_WRITE_FAILURE,
                "Failed to create manifest file",
                {"uploadId": upload_id, "reason": "upload has no destination folder"},
            )

        manifest = UploadManifest.build(upload, parts, now=now)
        document = manifest.to_dict()
        try:
            manifest_file_id = await self.bridge.create_json_file(
                MANIFEST_FILE_NAME, upload.destination_folder_id, document
            )
        except (AuthFailure, RetriesExhausted) as e:
            return storage_error(e)
        except ColdStorageError as e:
            logger.error(f"Manifest write for {upload_id} failed: {e}")
            return Err(ErrorKind.MANIFEST_WRITE_FAILURE, "Failed to create manifest file", {"reason": str(e)})
        if not manifest_file_id:
            return Err(
                ErrorKind.MANIFEST_WRITE_FAILURE,
                "Failed to create manifest file",
                {"uploadId": upload_id, "reason": "no file id returned"},
            )

        try:
            async with self.session_factory() as session, transactional(session):
                won = await UploadRepository(session).mark_finalized(
                    upload_id, document, manifest_file_id, completed_at=manifest.created_at
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record manifest for {upload_id}: {e}")
            return database_error(e)
        if not won:
            logger.warning(f"Upload {upload_id} was finalized concurrently; manifest {manifest_file_id} is redundant")
            return _already_finalized(upload_id, None)

        logger.info(f"Upload {upload_id} finalized with {manifest.total_files} files, manifest {manifest_file_id}")
        return Ok(
            ManifestSummary(
                upload_id=upload_id,
                manifest_file_id=manifest_file_id,
                manifest_file_name=MANIFEST_FILE_NAME,
                total_files=manifest.total_files,
                manifest=document,
            )
        )


def _already_finalized(upload_id: str, manifest_file_id: Optional[str]) -> Err:
    return Err(
        ErrorKind.ALREADY_FINALIZED,
        f"Upload {upload_id} is already finalized",
        {"uploadId": upload_id, "manifestFileId": manifest_file_id},
    )
