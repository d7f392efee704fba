from __future__ import annotations

from datetime import datetime
from datetime import timezone
from typing import Optional
from uuid import UUID
from uuid import uuid4

from sqlalchemy import BigInteger
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import UniqueConstraint
from sqlmodel import Field
from sqlmodel import SQLModel


class UploadFileDB(SQLModel, table=True):
    """Part record - the file stored in cold storage for one slot of an upload."""

    __tablename__ = "upload_files"
    __table_args__ = (UniqueConstraint("upload_id", "slot_name", name="upload_files_upload_slot_key"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    upload_id: str = Field(foreign_key="uploads.upload_id", index=True, nullable=False, max_length=64)
    slot_name: str = Field(max_length=255, nullable=False)
    destination_file_id: str = Field(max_length=255, nullable=False)
    name: str = Field(max_length=1024, nullable=False)
    size_bytes: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    mime: str = Field(default="application/octet-stream", max_length=255, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    class Config:
        arbitrary_types_allowed = True
