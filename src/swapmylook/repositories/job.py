"""GenerationJob repository.

Provides data access for GenerationJob entities. Every status change goes through
a compare-and-set UPDATE so concurrent writers (worker, webhook processor, cancel
endpoint) cannot overwrite each other's terminal outcome.
"""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from swapmylook.core.timezone import utc_now
from swapmylook.models.job import GenerationJob, JobStatus, sources_for

logger = structlog.get_logger()


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID, always reloading column values from the database.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_job_id: str) -> GenerationJob | None:
        """Retrieve job by the provider's prediction id.

        Args:
            external_job_id: Prediction id returned by the generation provider

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.external_job_id == external_job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_owner(self, owner_id: UUID, limit: int = 20) -> list[GenerationJob]:
        """Most recent jobs for a user, newest first."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        """Job counts grouped by status (statuses with no jobs are omitted)."""
        result = await self.session.execute(
            select(GenerationJob.status, func.count()).group_by(GenerationJob.status)  # type: ignore[arg-type]
        )
        return {status.value: count for status, count in result.all()}

    async def transition(self, job_id: UUID, target: JobStatus, **values: Any) -> bool:
        """Atomically move a job into ``target`` if its current status allows it.

        Issues ``UPDATE ... WHERE id = :id AND status IN (:sources)``. Exactly one
        of several racing writers wins; the others get False and must treat their
        result as discarded.

        Args:
            job_id: Job to update
            target: Desired status
            **values: Additional columns written in the same statement

        Returns:
            True if the row was updated, False if the job is missing or its
            status no longer permits the transition
        """
        now = utc_now()
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status.in_(sources_for(target)))  # type: ignore[attr-defined]
            .values(status=target, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1  # type: ignore[attr-defined]
        if not applied:
            logger.info("job.transition_rejected", job_id=str(job_id), target=target.value)
        return applied

    async def mark_processing(self, job_id: UUID, attempts: int) -> bool:
        """Advisory status for display; exclusivity comes from the queue lease.

        Args:
            job_id: Job being picked up
            attempts: Delivery count from the work queue item

        Returns:
            True if the job was queued (or already processing) and is now processing
        """
        job = await self.get_by_id(job_id)
        if job is None:
            return False
        now = utc_now()
        queue_time_ms = int((now - job.created_at).total_seconds() * 1000)
        return await self.transition(
            job_id,
            JobStatus.PROCESSING,
            attempts=attempts,
            started_at=job.started_at or now,
            queue_time_ms=queue_time_ms,
        )

    async def mark_succeeded(
        self, job_id: UUID, output_asset_id: UUID, external_job_id: str | None = None
    ) -> bool:
        """Record a successful output. Loses to any terminal status written first.

        Args:
            job_id: Job that completed
            output_asset_id: Stored output asset
            external_job_id: Provider prediction id, if known

        Returns:
            True if this call made the job succeeded
        """
        job = await self.get_by_id(job_id)
        if job is None:
            return False
        now = utc_now()
        values: dict[str, Any] = {
            "output_asset_id": output_asset_id,
            "completed_at": now,
            "error": None,
            "error_details": None,
        }
        if job.started_at is not None:
            values["processing_time_ms"] = int((now - job.started_at).total_seconds() * 1000)
        if external_job_id is not None:
            values["external_job_id"] = external_job_id
        return await self.transition(job_id, JobStatus.SUCCEEDED, **values)

    async def mark_failed(self, job_id: UUID, error: str, details: dict | None = None) -> bool:
        """Record a terminal failure with a human-readable reason.

        Args:
            job_id: Job that failed
            error: Reason shown to the user
            details: Optional structured diagnostics

        Returns:
            True if this call made the job failed
        """
        return await self.transition(
            job_id,
            JobStatus.FAILED,
            error=error[:2000],
            error_details=details,
            output_asset_id=None,
            completed_at=utc_now(),
        )

    async def mark_requeued(self, job_id: UUID) -> bool:
        """Hand a processing job back to queued after a transient failure."""
        return await self.transition(job_id, JobStatus.QUEUED)

    async def mark_cancelled(self, job_id: UUID) -> bool:
        """Cancel a job that no worker has picked up yet."""
        return await self.transition(job_id, JobStatus.CANCELLED, completed_at=utc_now())

    async def set_external_job_id(self, job_id: UUID, external_job_id: str) -> bool:
        """Store the provider prediction id on a non-terminal job.

        Returns:
            True if the job was still queued or processing
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(
                GenerationJob.status.in_([JobStatus.QUEUED, JobStatus.PROCESSING])  # type: ignore[attr-defined]
            )
            .values(external_job_id=external_job_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
