"""GenerationJob entity - one generation request and its lifecycle record."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from swapmylook.core.timezone import utc_now


class JobStatus(str, Enum):
    """Job lifecycle status.

    queued -> processing -> succeeded | failed
    queued -> cancelled
    processing -> queued (transient failure handed back to the work queue)
    queued -> succeeded | failed (provider completion webhook)
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "JobStatus") -> bool:
        return self in sources_for(target)


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED})

# target status -> statuses it may be entered from
_TRANSITION_SOURCES: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
    JobStatus.SUCCEEDED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED, JobStatus.PROCESSING}),
    JobStatus.CANCELLED: frozenset({JobStatus.QUEUED}),
}


def sources_for(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which a job may move into ``target``."""
    return _TRANSITION_SOURCES[target]


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks one try-on request from creation to a terminal status.

    ``output_asset_id`` is set only on succeeded jobs and ``error`` only on failed
    ones. The ``processing`` status is advisory (status display only); exclusive
    ownership of a running job comes from the work queue lease, not from this row.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(foreign_key="users.id", index=True)
    subject_asset_id: UUID = Field(foreign_key="image_assets.id")
    style_asset_id: UUID = Field(foreign_key="image_assets.id")
    prompt: Optional[str] = Field(default=None, max_length=1000)
    parameters: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    priority: int = Field(default=5, ge=1, le=10)
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    external_job_id: Optional[str] = Field(default=None, max_length=255, index=True)
    output_asset_id: Optional[UUID] = Field(default=None)
    error: Optional[str] = Field(default=None, max_length=2000)
    error_details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    queue_time_ms: int = Field(default=0)
    processing_time_ms: int = Field(default=0)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def ensure_can_transition(self, target: JobStatus) -> None:
        """Raise InvalidStateTransition unless ``target`` is reachable from the current status."""
        if not self.status.can_transition_to(target):
            raise InvalidStateTransition(
                f"Cannot mark {target.value} from {self.status.value}. "
                f"Job must be in one of: {', '.join(sorted(s.value for s in sources_for(target)))}."
            )
