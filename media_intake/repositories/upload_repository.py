from __future__ import annotations

from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Optional

from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from media_intake.models.upload import UploadDB


class UploadRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, upload: UploadDB) -> UploadDB:
        self.session.add(upload)
        await self.session.flush()
        await self.session.refresh(upload)
        return upload

    async def get_by_id(self, upload_id: str) -> Optional[UploadDB]:
        stmt = select(UploadDB).where(UploadDB.upload_id == upload_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_finalized(
        self,
        upload_id: str,
        manifest: dict[str, Any],
        manifest_file_id: str,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Record the manifest and completion time unless another finalize already did.

        Returns False when the upload was already finalized.
        """
        now = completed_at or datetime.now(timezone.utc)
        stmt = (
            update(UploadDB)
            .where(UploadDB.upload_id == upload_id, UploadDB.completed_at.is_(None))  # type: ignore[union-attr]
            .values(manifest=manifest, manifest_file_id=manifest_file_id, completed_at=now, updated_at=now)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)
