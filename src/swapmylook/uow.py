"""Unit of Work pattern.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from swapmylook.repositories.asset import ImageAssetRepository
from swapmylook.repositories.audit import AuditRepository
from swapmylook.repositories.job import GenerationJobRepository
from swapmylook.repositories.user import UserRepository
from swapmylook.repositories.webhook_receipt import WebhookReceiptRepository
from swapmylook.repositories.work_queue import WorkQueueRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages database transactions and provides access to all repositories.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)
            await uow.work_queue.enqueue(job.id)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.users = UserRepository(session)
        self.assets = ImageAssetRepository(session)
        self.jobs = GenerationJobRepository(session)
        self.work_queue = WorkQueueRepository(session)
        self.webhook_receipts = WebhookReceiptRepository(session)
        self.audit = AuditRepository(session)

    async def commit(self) -> None:
        """Commit early, e.g. to make a receipt durable before side effects run."""
        await self.session.commit()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on clean exit, roll back on exception, always release the session.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.users.add(user)
    """

    async def _create_uow():
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
