"""Webhook event processing.

Runs after the delivery has been verified and recorded in the idempotency
ledger, and after the sender already received its 200. Failures here cannot be
retried by the sender, so they are logged at error level and written onto the
receipt instead of being raised.
"""

from typing import Any, Awaitable, Callable

import structlog

from swapmylook.core.config import Settings
from swapmylook.services.billing.subscription_reconciler import SubscriptionReconciler
from swapmylook.services.webhooks.events import (
    GenerationCompleted,
    GenerationFailed,
    PaymentEvent,
    SubscriptionEvent,
    UnknownEvent,
    WebhookEvent,
)
from swapmylook.services.webhooks.job_completion import JobCompletionService

logger = structlog.get_logger()


class WebhookProcessor:
    """Dispatches parsed events to job completion or subscription reconciliation.

    Dispatch is keyed by event class, so every event class defined in
    ``events`` must have an entry here.
    """

    def __init__(self, uow_factory, storage, settings: Settings):
        """Initialize processor.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            storage: Object storage client
            settings: Application settings
        """
        self.uow_factory = uow_factory
        self.settings = settings
        self.job_completion = JobCompletionService(uow_factory, storage, settings)
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            GenerationCompleted: self._handle_generation_completed,
            GenerationFailed: self._handle_generation_failed,
            SubscriptionEvent: self._handle_billing,
            PaymentEvent: self._handle_billing,
            UnknownEvent: self._handle_unknown,
        }

    async def process(self, provider: str, webhook_id: str, event: WebhookEvent) -> bool:
        """Apply one recorded event and update its receipt.

        Args:
            provider: Webhook source ("generation" or "payments")
            webhook_id: Delivery id already recorded in the ledger
            event: Parsed event

        Returns:
            True if processing finished, False if it failed (already logged)
        """
        log = logger.bind(provider=provider, webhook_id=webhook_id, event=type(event).__name__)
        try:
            await self._handlers[type(event)](event)
        except Exception as e:
            # The ledger already holds this id, so the sender's redelivery
            # would be treated as a duplicate: the event is partially applied.
            log.error(
                "webhook.processing_failed", partially_applied=True, error=str(e), exc_info=True
            )
            await self._record_outcome(webhook_id, error=f"{type(e).__name__}: {e}")
            return False

        await self._record_outcome(webhook_id, error=None)
        log.info("webhook.processed")
        return True

    async def _record_outcome(self, webhook_id: str, error: str | None) -> None:
        async with await self.uow_factory() as uow:
            if error is None:
                await uow.webhook_receipts.mark_processed(webhook_id)
            else:
                await uow.webhook_receipts.mark_failed(webhook_id, error)

    async def _handle_generation_completed(self, event: GenerationCompleted) -> None:
        await self.job_completion.complete(event)

    async def _handle_generation_failed(self, event: GenerationFailed) -> None:
        await self.job_completion.fail(event)

    async def _handle_billing(self, event: SubscriptionEvent | PaymentEvent) -> None:
        async with await self.uow_factory() as uow:
            reconciler = SubscriptionReconciler(uow, self.settings.product_plans)
            await reconciler.apply(event)

    async def _handle_unknown(self, event: UnknownEvent) -> None:
        logger.info("webhook.ignored", provider=event.provider, event_type=event.event_type)
