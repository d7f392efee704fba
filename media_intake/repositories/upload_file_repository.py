from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from media_intake.models.upload_file import UploadFileDB


class UploadFileRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, part: UploadFileDB) -> UploadFileDB:
        """Insert the part record for a slot, replacing any earlier file recorded for it."""
        stmt = (
            insert(UploadFileDB)
            .values(
                id=part.id,
                upload_id=part.upload_id,
                slot_name=part.slot_name,
                destination_file_id=part.destination_file_id,
                name=part.name,
                size_bytes=part.size_bytes,
                mime=part.mime,
                created_at=part.created_at,
            )
            .on_conflict_do_update(
                index_elements=["upload_id", "slot_name"],
                set_={
                    "destination_file_id": part.destination_file_id,
                    "name": part.name,
                    "size_bytes": part.size_bytes,
                    "mime": part.mime,
                    "created_at": part.created_at,
                },
            )
            .returning(UploadFileDB)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def list_by_upload(self, upload_id: str) -> list[UploadFileDB]:
        """All part records for an upload, ordered by slot name."""
        stmt = select(UploadFileDB).where(UploadFileDB.upload_id == upload_id).order_by(UploadFileDB.slot_name.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
