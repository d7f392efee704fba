from __future__ import annotations

from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Optional

from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field
from sqlmodel import SQLModel


class UploadDB(SQLModel, table=True):
    """Upload table - one row per gym upload unit and its destination folder tree."""

    __tablename__ = "uploads"

    upload_id: str = Field(primary_key=True, max_length=64)
    gym_name: str = Field(max_length=255, nullable=False)
    gym_slug: Optional[str] = Field(default=None, max_length=255)
    expected_slots: list[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    folder_structure: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))
    destination_folder_id: Optional[str] = Field(default=None, max_length=255)
    manifest: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONB, nullable=True))
    manifest_file_id: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    class Config:
        arbitrary_types_allowed = True

    @property
    def is_finalized(self) -> bool:
        return self.completed_at is not None
