"""WebhookReceipt repository - the idempotency ledger."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from swapmylook.core.database import dialect_insert
from swapmylook.core.timezone import utc_now
from swapmylook.models.webhook_receipt import ReceiptState, WebhookReceipt


class WebhookReceiptRepository:
    """Repository for WebhookReceipt entities.

    ``record`` is the single duplicate test for inbound webhooks. It relies on the
    unique index over ``webhook_id`` rather than a read-then-write check, so two
    concurrent deliveries of the same id cannot both be treated as first.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def record(self, provider: str, webhook_id: str, event_type: str | None = None) -> bool:
        """Insert a receipt for ``webhook_id`` unless one already exists.

        Query explanation:
        - INSERT ... ON CONFLICT (webhook_id) DO NOTHING
        - rowcount 1: first delivery, caller applies side effects
        - rowcount 0: duplicate, caller acknowledges without doing anything

        Args:
            provider: Webhook source ("generation" or "payments")
            webhook_id: Sender-assigned delivery id
            event_type: Event type for diagnostics

        Returns:
            True if newly recorded, False if this id was seen before
        """
        stmt = (
            dialect_insert(self.session, WebhookReceipt)
            .values(
                id=uuid4(),
                provider=provider,
                webhook_id=webhook_id,
                event_type=event_type,
                state=ReceiptState.RECEIVED,
                created_at=utc_now(),
            )
            .on_conflict_do_nothing(index_elements=["webhook_id"])
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def get_by_webhook_id(self, webhook_id: str) -> WebhookReceipt | None:
        result = await self.session.execute(
            select(WebhookReceipt)
            .where(WebhookReceipt.webhook_id == webhook_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_processed(self, webhook_id: str) -> None:
        await self.session.execute(
            update(WebhookReceipt)
            .where(WebhookReceipt.webhook_id == webhook_id)  # type: ignore[arg-type]
            .values(state=ReceiptState.PROCESSED, processed_at=utc_now(), error=None)
        )

    async def mark_failed(self, webhook_id: str, error: str) -> None:
        await self.session.execute(
            update(WebhookReceipt)
            .where(WebhookReceipt.webhook_id == webhook_id)  # type: ignore[arg-type]
            .values(state=ReceiptState.FAILED, processed_at=utc_now(), error=error[:2000])
        )

    async def prune_older_than(self, cutoff: datetime) -> int:
        """Delete receipts created before ``cutoff``.

        Returns:
            Number of receipts deleted
        """
        result = await self.session.execute(
            delete(WebhookReceipt).where(WebhookReceipt.created_at < cutoff)  # type: ignore[arg-type]
        )
        return result.rowcount  # type: ignore[attr-defined]
