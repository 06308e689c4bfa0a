"""Work queue tests.

Tests focus on delivery guarantees of WorkQueueRepository:
- Enqueue is idempotent per job
- A live lease hides an item from other workers
- An expired lease makes the item claimable again (at-least-once delivery)
- Failed deliveries are retried with backoff until attempts are exhausted
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from swapmylook.core.timezone import utc_now
from swapmylook.models.queue_item import WorkQueueItem
from swapmylook.repositories.work_queue import RetryDecision, WorkQueueRepository


async def expire_lease(session, job_id):
    """Move an item's lease into the past, as if its worker died."""
    await session.execute(
        update(WorkQueueItem)
        .where(WorkQueueItem.job_id == job_id)
        .values(leased_until=utc_now() - timedelta(seconds=1))
    )
    await session.commit()


@pytest.mark.asyncio
class TestEnqueue:
    async def test_enqueue_is_idempotent(self, session, make_job):
        """Test that enqueueing an already-queued job leaves a single item."""
        job = await make_job(enqueue=False)
        queue = WorkQueueRepository(session)

        first = await queue.enqueue(job.id, priority=3, max_attempts=3)
        second = await queue.enqueue(job.id, priority=1, max_attempts=5)
        await session.commit()

        assert first is True
        assert second is False
        item = await queue.get(job.id)
        assert item.priority == 3
        assert item.max_attempts == 3
        assert (await queue.stats()).depth == 1

    async def test_delayed_item_not_claimable(self, session, make_job):
        job = await make_job(enqueue=False)
        queue = WorkQueueRepository(session)

        await queue.enqueue(job.id, delay_seconds=60)
        await session.commit()

        assert await queue.claim("worker-a") == []
        assert (await queue.stats()).delayed == 1


@pytest.mark.asyncio
class TestClaim:
    async def test_claim_orders_by_priority_then_age(self, session, make_job):
        low = await make_job(priority=9)
        high = await make_job(priority=1)
        normal = await make_job(priority=5)
        queue = WorkQueueRepository(session)

        items = await queue.claim("worker-a", limit=3)
        await session.commit()

        assert [item.job_id for item in items] == [high.id, normal.id, low.id]

    async def test_claim_sets_lease_and_counts_attempt(self, session, make_job):
        job = await make_job()
        queue = WorkQueueRepository(session)

        items = await queue.claim("worker-a", lease_seconds=120)
        await session.commit()

        assert len(items) == 1
        item = items[0]
        assert item.attempts == 1
        assert item.lease_owner == "worker-a"
        assert item.leased_until > utc_now() + timedelta(seconds=100)

    async def test_leased_item_invisible_to_other_workers(self, session, make_job):
        """Test that an item is delivered to at most one worker at a time."""
        await make_job()
        queue = WorkQueueRepository(session)

        first = await queue.claim("worker-a")
        await session.commit()
        second = await queue.claim("worker-b")
        await session.commit()

        assert len(first) == 1
        assert second == []
        stats = await queue.stats()
        assert stats.depth == 1
        assert stats.leased == 1

    async def test_expired_lease_redelivers(self, session, make_job):
        """Test that a crashed worker's item goes to another worker with attempts incremented."""
        job = await make_job()
        queue = WorkQueueRepository(session)

        await queue.claim("worker-a")
        await session.commit()
        await expire_lease(session, job.id)

        items = await queue.claim("worker-b")
        await session.commit()

        assert len(items) == 1
        assert items[0].lease_owner == "worker-b"
        assert items[0].attempts == 2

    async def test_stale_holder_cannot_ack(self, session, make_job):
        job = await make_job()
        queue = WorkQueueRepository(session)

        await queue.claim("worker-a")
        await session.commit()
        await expire_lease(session, job.id)
        await queue.claim("worker-b")
        await session.commit()

        assert await queue.ack(job.id, "worker-a") is False
        assert await queue.ack(job.id, "worker-b") is True
        await session.commit()
        assert await queue.get(job.id) is None


@pytest.mark.asyncio
class TestFail:
    async def test_fail_schedules_retry_with_backoff(self, session, make_job):
        job = await make_job()
        queue = WorkQueueRepository(session)
        await queue.claim("worker-a")
        await session.commit()

        decision = await queue.fail(job.id, "worker-a", "TransientError: 503", backoff_seconds=30)
        await session.commit()

        assert decision == RetryDecision.RETRY
        item = await queue.get(job.id)
        assert item.lease_owner is None
        assert item.leased_until is None
        assert item.last_error == "TransientError: 503"
        assert item.available_at > utc_now() + timedelta(seconds=20)
        assert await queue.claim("worker-b") == []

    async def test_backoff_grows_exponentially(self, session, make_job):
        job = await make_job(max_attempts=5)
        queue = WorkQueueRepository(session)

        for _ in range(2):
            await queue.claim("worker-a")
            await session.commit()
            await queue.fail(job.id, "worker-a", "boom", backoff_seconds=0)
            await session.commit()

        await queue.claim("worker-a")
        await session.commit()
        before = utc_now()
        await queue.fail(job.id, "worker-a", "boom", backoff_seconds=10)
        await session.commit()

        # Third attempt: 10 * 2 ** 2
        item = await queue.get(job.id)
        delay = (item.available_at - before).total_seconds()
        assert 39 <= delay <= 41

    async def test_fail_on_last_attempt_exhausts(self, session, make_job):
        job = await make_job(max_attempts=2)
        queue = WorkQueueRepository(session)

        await queue.claim("worker-a")
        await session.commit()
        decision = await queue.fail(job.id, "worker-a", "first", backoff_seconds=0)
        assert decision == RetryDecision.RETRY
        await session.commit()

        await queue.claim("worker-a")
        await session.commit()
        decision = await queue.fail(job.id, "worker-a", "second", backoff_seconds=0)
        await session.commit()

        assert decision == RetryDecision.EXHAUSTED
        assert await queue.get(job.id) is None

    async def test_fail_without_lease(self, session, make_job):
        job = await make_job()
        queue = WorkQueueRepository(session)
        await queue.claim("worker-a")
        await session.commit()

        decision = await queue.fail(job.id, "worker-b", "not mine")

        assert decision == RetryDecision.LEASE_LOST


@pytest.mark.asyncio
class TestRemoveAndReap:
    async def test_remove_unleased_item(self, session, make_job):
        job = await make_job()
        queue = WorkQueueRepository(session)

        assert await queue.remove(job.id) is True
        await session.commit()
        assert await queue.get(job.id) is None

    async def test_remove_leaves_live_lease_alone(self, session, make_job):
        job = await make_job()
        queue = WorkQueueRepository(session)
        await queue.claim("worker-a")
        await session.commit()

        assert await queue.remove(job.id) is False
        await session.commit()
        assert await queue.get(job.id) is not None

    async def test_reap_exhausted_returns_dead_items(self, session, make_job):
        """Test that an item whose final lease expired is reaped, and a live one is not."""
        dead = await make_job(max_attempts=1)
        alive = await make_job(max_attempts=1)
        queue = WorkQueueRepository(session)

        await queue.claim("worker-a", limit=2)
        await session.commit()
        await expire_lease(session, dead.id)

        reaped = await queue.reap_exhausted()
        await session.commit()

        assert [item.job_id for item in reaped] == [dead.id]
        assert await queue.get(dead.id) is None
        assert await queue.get(alive.id) is not None
        assert await queue.claim("worker-b") == []
