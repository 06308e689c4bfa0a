"""Work queue repository.

Durable job queue stored in PostgreSQL. Workers claim items with
FOR UPDATE SKIP LOCKED and hold them under a time-bounded lease; an item whose
lease expires without an ack becomes claimable again, giving at-least-once
delivery.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from swapmylook.core.database import dialect_insert
from swapmylook.core.timezone import utc_now
from swapmylook.models.queue_item import WorkQueueItem

logger = structlog.get_logger()


class RetryDecision(str, Enum):
    """Outcome of reporting a failed delivery."""

    RETRY = "retry"
    EXHAUSTED = "exhausted"
    LEASE_LOST = "lease_lost"


@dataclass
class QueueStats:
    depth: int
    leased: int
    delayed: int


class WorkQueueRepository:
    """Repository for WorkQueueItem entities.

    Invariant: an item is visible to at most one worker at a time (leased_until
    in the future), and it stays in the table until acked, removed, or its
    attempts are exhausted.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def enqueue(
        self,
        job_id: UUID,
        priority: int = 5,
        max_attempts: int = 3,
        delay_seconds: float = 0.0,
    ) -> bool:
        """Add a job to the queue. Enqueueing an already-queued job is a no-op.

        Args:
            job_id: Job to deliver
            priority: Lower runs first (1 highest, 10 lowest)
            max_attempts: Delivery attempts before the item is exhausted
            delay_seconds: Delay before the item becomes claimable

        Returns:
            True if a new item was inserted, False if one already existed
        """
        now = utc_now()
        stmt = (
            dialect_insert(self.session, WorkQueueItem)
            .values(
                job_id=job_id,
                priority=priority,
                attempts=0,
                max_attempts=max_attempts,
                available_at=now + timedelta(seconds=delay_seconds),
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["job_id"])
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def claim(
        self, worker_id: str, limit: int = 1, lease_seconds: int = 300
    ) -> list[WorkQueueItem]:
        """Lease up to ``limit`` claimable items for this worker.

        Query explanation:
        - available_at <= now: backoff delay has elapsed
        - leased_until IS NULL OR leased_until < now: nobody holds a live lease
        - attempts < max_attempts: not exhausted
        - ORDER BY priority ASC, created_at ASC: highest priority, oldest first
        - FOR UPDATE SKIP LOCKED: concurrent claimers get disjoint rows

        Args:
            worker_id: Identifier recorded as the lease owner
            limit: Maximum number of items to claim
            lease_seconds: Lease duration; must exceed the longest job runtime

        Returns:
            Claimed items with attempts already incremented
        """
        now = utc_now()
        # FOR UPDATE SKIP LOCKED ensures worker coordination
        result = await self.session.execute(
            select(WorkQueueItem)
            .where(
                WorkQueueItem.available_at <= now,  # type: ignore[arg-type]
                or_(
                    WorkQueueItem.leased_until.is_(None),  # type: ignore[union-attr]
                    WorkQueueItem.leased_until < now,  # type: ignore[operator]
                ),
                WorkQueueItem.attempts < WorkQueueItem.max_attempts,  # type: ignore[arg-type]
            )
            .order_by(WorkQueueItem.priority.asc(), WorkQueueItem.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        items = list(result.scalars().all())

        lease_until = now + timedelta(seconds=lease_seconds)
        for item in items:
            item.attempts += 1
            item.leased_until = lease_until
            item.lease_owner = worker_id
            self.session.add(item)
        await self.session.flush()

        if items:
            logger.debug("queue.claimed", worker_id=worker_id, count=len(items))
        return items

    async def _get_owned(self, job_id: UUID, worker_id: str) -> WorkQueueItem | None:
        result = await self.session.execute(
            select(WorkQueueItem)
            .where(
                WorkQueueItem.job_id == job_id,  # type: ignore[arg-type]
                WorkQueueItem.lease_owner == worker_id,  # type: ignore[arg-type]
                WorkQueueItem.leased_until >= utc_now(),  # type: ignore[operator]
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ack(self, job_id: UUID, worker_id: str) -> bool:
        """Remove a finished item. Only the current lease holder may ack.

        Returns:
            True if the item was deleted, False if the lease was lost
        """
        result = await self.session.execute(
            delete(WorkQueueItem).where(
                WorkQueueItem.job_id == job_id,  # type: ignore[arg-type]
                WorkQueueItem.lease_owner == worker_id,  # type: ignore[arg-type]
            )
        )
        acked = result.rowcount == 1  # type: ignore[attr-defined]
        if not acked:
            logger.warning("queue.ack_lease_lost", job_id=str(job_id), worker_id=worker_id)
        return acked

    async def fail(
        self, job_id: UUID, worker_id: str, error: str, backoff_seconds: float = 30.0
    ) -> RetryDecision:
        """Report a failed delivery and schedule a retry if attempts remain.

        Retry delay grows exponentially: ``backoff_seconds * 2 ** (attempts - 1)``.
        An exhausted item is deleted; the caller fails the job.

        Args:
            job_id: Job whose delivery failed
            worker_id: Lease holder reporting the failure
            error: Failure reason stored on the item
            backoff_seconds: Base retry delay

        Returns:
            RETRY, EXHAUSTED, or LEASE_LOST if this worker no longer holds the item
        """
        item = await self._get_owned(job_id, worker_id)
        if item is None:
            logger.warning("queue.fail_lease_lost", job_id=str(job_id), worker_id=worker_id)
            return RetryDecision.LEASE_LOST

        if item.attempts >= item.max_attempts:
            await self.session.delete(item)
            await self.session.flush()
            return RetryDecision.EXHAUSTED

        delay = backoff_seconds * (2 ** (item.attempts - 1))
        item.available_at = utc_now() + timedelta(seconds=delay)
        item.leased_until = None
        item.lease_owner = None
        item.last_error = error[:2000]
        self.session.add(item)
        await self.session.flush()
        logger.info(
            "queue.retry_scheduled",
            job_id=str(job_id),
            attempts=item.attempts,
            delay_seconds=delay,
        )
        return RetryDecision.RETRY

    async def remove(self, job_id: UUID) -> bool:
        """Drop an item nobody is working on (cancellation, webhook completion).

        Items under a live lease are left alone; the holder acks them after it
        finds the job terminal.

        Returns:
            True if an item was deleted
        """
        now = utc_now()
        result = await self.session.execute(
            delete(WorkQueueItem).where(
                WorkQueueItem.job_id == job_id,  # type: ignore[arg-type]
                or_(
                    WorkQueueItem.leased_until.is_(None),  # type: ignore[union-attr]
                    WorkQueueItem.leased_until < now,  # type: ignore[operator]
                ),
            )
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def reap_exhausted(self) -> list[WorkQueueItem]:
        """Delete and return items whose last lease expired on their final attempt.

        These items can never be claimed again; the worker fails their jobs.
        """
        now = utc_now()
        result = await self.session.execute(
            select(WorkQueueItem)
            .where(
                WorkQueueItem.attempts >= WorkQueueItem.max_attempts,  # type: ignore[arg-type]
                or_(
                    WorkQueueItem.leased_until.is_(None),  # type: ignore[union-attr]
                    WorkQueueItem.leased_until < now,  # type: ignore[operator]
                ),
            )
            .with_for_update(skip_locked=True)
        )
        items = list(result.scalars().all())
        for item in items:
            await self.session.delete(item)
        await self.session.flush()
        return items

    async def get(self, job_id: UUID) -> WorkQueueItem | None:
        result = await self.session.execute(
            select(WorkQueueItem)
            .where(WorkQueueItem.job_id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def stats(self) -> QueueStats:
        """Queue depth, live leases, and items waiting out a retry delay."""
        now = utc_now()
        result = await self.session.execute(
            select(
                func.count(),
                func.count().filter(WorkQueueItem.leased_until >= now),  # type: ignore[operator]
                func.count().filter(
                    and_(
                        WorkQueueItem.available_at > now,  # type: ignore[operator]
                        WorkQueueItem.leased_until.is_(None),  # type: ignore[union-attr]
                    )
                ),
            ).select_from(WorkQueueItem)
        )
        depth, leased, delayed = result.one()
        return QueueStats(depth=depth, leased=leased, delayed=delayed)
