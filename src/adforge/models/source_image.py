"""SourceImage entity - user-uploaded image referenced by jobs."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from adforge.core.timezone import utcnow


class SourceImage(SQLModel, table=True):
    """SourceImage is owned by exactly one user and referenced (not owned) by jobs.

    file_path is the object key inside the uploads bucket:
    {user_id}/{folder_id}/{generated_name}
    """

    __tablename__ = "images"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    folder_id: Optional[UUID] = Field(default=None)
    file_path: str = Field(max_length=1024)
    original_name: Optional[str] = Field(default=None, max_length=255)
    mime_type: str = Field(default="image/png", max_length=100)
    size_bytes: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
