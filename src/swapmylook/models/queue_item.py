"""WorkQueueItem entity - durable queue entry carrying a job id to the workers."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Field, SQLModel

from swapmylook.core.timezone import utc_now


class WorkQueueItem(SQLModel, table=True):
    """Queue entry keyed by job id, so re-enqueueing the same job is a no-op.

    Not authoritative for job status; the generation_jobs row is.
    """

    __tablename__ = "work_queue_items"  # type: ignore[assignment]

    job_id: UUID = Field(primary_key=True)
    priority: int = Field(default=5, index=True)
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    available_at: datetime = Field(default_factory=utc_now, index=True)
    leased_until: Optional[datetime] = Field(default=None, index=True)
    lease_owner: Optional[str] = Field(default=None, max_length=100)
    last_error: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(default_factory=utc_now)
