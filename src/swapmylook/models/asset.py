"""ImageAsset entity - references to blobs in object storage."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from swapmylook.core.timezone import utc_now


class AssetKind(str, Enum):
    SUBJECT = "subject"
    STYLE = "style"
    OUTPUT = "output"


class ImageAsset(SQLModel, table=True):
    """ImageAsset points at an object-storage key; the bytes live in the blob store."""

    __tablename__ = "image_assets"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(foreign_key="users.id", index=True)
    kind: AssetKind = Field(index=True)
    storage_key: str = Field(max_length=512, unique=True)
    content_type: str = Field(default="image/png", max_length=100)
    size_bytes: int = Field(default=0, ge=0)
    source_job_id: Optional[UUID] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utc_now)
