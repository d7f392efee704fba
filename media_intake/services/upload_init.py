from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from media_intake.models.upload import UploadDB
from media_intake.orm.transaction import transactional
from media_intake.repositories.upload_repository import UploadRepository
from media_intake.result import Err
from media_intake.result import ErrorKind
from media_intake.result import Ok
from media_intake.result import Result
from media_intake.services.error_mapping import database_error
from media_intake.services.error_mapping import missing
from media_intake.services.error_mapping import storage_error
from media_intake.storage.drive_client import ColdStorageBridge
from media_intake.storage.errors import ColdStorageError
from media_intake.utils import new_upload_id
from media_intake.utils import sanitize_name
from media_intake.utils import timestamp_label


logger = logging.getLogger(__name__)

RAW_FOOTAGE = "Raw footage"
FINAL_FOOTAGE = "Final footage"


@dataclass(frozen=True)
class UploadFolders:
    upload_id: str
    date_str: str
    gym_folder_id: str
    timestamp_folder_id: str
    raw_footage_folder_id: str
    final_footage_folder_id: str
    raw_slot_folders: dict[str, str]
    final_slot_folders: dict[str, str]

    def as_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "dateStr": self.date_str,
            "gymFolderId": self.gym_folder_id,
            "timestampFolderId": self.timestamp_folder_id,
            "rawFootageFolderId": self.raw_footage_folder_id,
            "finalFootageFolderId": self.final_footage_folder_id,
            "rawSlotFolders": self.raw_slot_folders,
            "finalSlotFolders": self.final_slot_folders,
            # clients upload into the raw slot folders
            "slotFolders": self.raw_slot_folders,
        }


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class UploadInitializer:
    def __init__(
        self,
        bridge: ColdStorageBridge,
        session_factory: Optional[async_sessionmaker[AsyncSession]],
        root_folder_id: str,
        slot_names: list[str],
    ) -> None:
        self.bridge = bridge
        self.session_factory = session_factory
        self.root_folder_id = root_folder_id
        self.slot_names = slot_names

    async def init_upload(
        self, gym_name: Optional[str], slots: Optional[list[str]] = None, now: Optional[datetime] = None
    ) -> Result[UploadFolders]:
        """Create (or reuse) the gym's folder tree for a new upload and record the upload."""
        if not gym_name or not gym_name.strip():
            return missing("gymName")
        if not self.root_folder_id:
            return Err(ErrorKind.STORAGE_NOT_CONFIGURED, "Storage not configured", {"setting": "STORAGE_ROOT_FOLDER_ID"})
        wanted = list(slots) if slots else list(self.slot_names)
        unknown = [s for s in wanted if s not in self.slot_names]
        if unknown:
            return Err(ErrorKind.INVALID_SLOT, f"Unknown slot(s): {', '.join(unknown)}", {"allowed": self.slot_names})
        if self.session_factory is None:
            return Err(ErrorKind.DATABASE_NOT_CONFIGURED, "Database not configured")

        label = timestamp_label(now)
        upload_id = new_upload_id()
        try:
            gym_folder = await self.bridge.ensure_folder(sanitize_name(gym_name), self.root_folder_id)
            ts_folder = await self.bridge.ensure_folder(label, gym_folder)
            raw_folder = await self.bridge.ensure_folder(RAW_FOOTAGE, ts_folder)
            final_folder = await self.bridge.ensure_folder(FINAL_FOOTAGE, ts_folder)
            raw_slots = {s: await self.bridge.ensure_folder(s, raw_folder) for s in wanted}
            final_slots = {s: await self.bridge.ensure_folder(s, final_folder) for s in wanted}
        except ColdStorageError as e:
            logger.error(f"Failed to create folder structure for {gym_name!r}: {e}")
            return storage_error(e)

        folders = UploadFolders(
            upload_id=upload_id,
            date_str=label,
            gym_folder_id=gym_folder,
            timestamp_folder_id=ts_folder,
            raw_footage_folder_id=raw_folder,
            final_footage_folder_id=final_folder,
            raw_slot_folders=raw_slots,
            final_slot_folders=final_slots,
        )
        try:
            async with self.session_factory() as session, transactional(session):
                await UploadRepository(session).create(
                    UploadDB(
                        upload_id=upload_id,
                        gym_name=gym_name.strip(),
                        gym_slug=slugify(gym_name),
                        expected_slots=wanted,
                        folder_structure=folders.as_dict(),
                        destination_folder_id=ts_folder,
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record upload {upload_id}: {e}")
            return database_error(e)

        logger.info(f"Initialized upload {upload_id} for {gym_name!r} with slots {wanted}")
        return Ok(folders)
