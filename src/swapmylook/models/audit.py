"""AuditEntry entity - append-only record of user-visible mutations."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from swapmylook.core.timezone import utc_now


class AuditEntry(SQLModel, table=True):
    """AuditEntry tracks generation and subscription changes for support and analytics."""

    __tablename__ = "audit_entries"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    type: str = Field(max_length=50, index=True)  # "generation" or "subscription_change"
    action: str = Field(max_length=100)
    resource_type: Optional[str] = Field(default=None, max_length=50)
    resource_id: Optional[str] = Field(default=None, max_length=255)
    details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_success: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)
