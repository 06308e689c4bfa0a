"""Subscription reconciliation from payment-provider webhooks.

Maps verified subscription and payment events onto the local User row. Every
handler writes absolute values taken from the event (status, plan, quota
ceiling, period end) and never increments anything, so re-applying the same
payload leaves the user unchanged.
"""

from datetime import datetime, timezone
from typing import Awaitable, Callable
from uuid import UUID

import structlog

from swapmylook.core.timezone import utc_now
from swapmylook.models.audit import AuditEntry
from swapmylook.models.user import Plan, SubscriptionStatus, User
from swapmylook.services.webhooks.events import (
    PaymentEvent,
    PaymentEventKind,
    SubscriptionEvent,
    SubscriptionEventKind,
    SubscriptionPayload,
)
from swapmylook.uow import UnitOfWork

logger = structlog.get_logger()

PAYMENT_PROVIDER = "dodo"

# Provider subscription status -> local status
PROVIDER_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "on_hold": SubscriptionStatus.PAST_DUE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "cancelled": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
    "failed": SubscriptionStatus.CANCELED,
    "expired": SubscriptionStatus.EXPIRED,
    "pending": SubscriptionStatus.TRIALING,
    "trialing": SubscriptionStatus.TRIALING,
}


def map_provider_status(status: str | None) -> SubscriptionStatus | None:
    if not status:
        return None
    return PROVIDER_STATUS_MAP.get(status.lower())


def parse_period_end(value: int | float | str | None) -> datetime | None:
    """Convert a provider period-end value to a naive UTC datetime.

    Accepts Unix seconds (number or numeric string) or an ISO-8601 string.
    Returns None for anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            value = int(stripped)
        else:
            try:
                parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
            except ValueError:
                logger.warning("subscription.period_end_unparseable", value=value)
                return None
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        logger.warning("subscription.period_end_unparseable", value=value)
        return None


class SubscriptionReconciler:
    """Applies subscription/payment events to users inside one Unit of Work.

    Example:
        async with await uow_factory() as uow:
            reconciler = SubscriptionReconciler(uow, settings.product_plans)
            await reconciler.apply(event)
    """

    def __init__(self, uow: UnitOfWork, product_plans: dict[str, str]):
        """Initialize reconciler.

        Args:
            uow: Active Unit of Work; the caller commits
            product_plans: Provider product id -> plan name
        """
        self.uow = uow
        self.product_plans = product_plans
        self._subscription_handlers: dict[
            SubscriptionEventKind, Callable[[User, SubscriptionPayload], Awaitable[str]]
        ] = {
            SubscriptionEventKind.CREATED: self._apply_snapshot,
            SubscriptionEventKind.UPDATED: self._apply_snapshot,
            SubscriptionEventKind.PLAN_CHANGED: self._apply_snapshot,
            SubscriptionEventKind.ACTIVE: self._apply_active,
            SubscriptionEventKind.RENEWED: self._apply_renewed,
            SubscriptionEventKind.ON_HOLD: self._apply_on_hold,
            SubscriptionEventKind.CANCELLED: self._apply_cancelled,
            SubscriptionEventKind.FAILED: self._apply_failed,
            SubscriptionEventKind.EXPIRED: self._apply_expired,
        }

    async def find_user(self, payload: SubscriptionPayload) -> User | None:
        """Locate the local user for a payload.

        Lookup order: application user id from metadata, then provider
        subscription id, then provider customer id. First match wins.
        """
        if payload.app_user_id:
            try:
                user_id = UUID(payload.app_user_id)
            except ValueError:
                logger.warning("subscription.invalid_app_user_id", app_user_id=payload.app_user_id)
            else:
                user = await self.uow.users.get_for_update(user_id)
                if user is not None:
                    return user

        if payload.subscription_id:
            user = await self.uow.users.get_by_provider_subscription_id(payload.subscription_id)
            if user is not None:
                return user

        if payload.customer_id:
            return await self.uow.users.get_by_provider_customer_id(payload.customer_id)

        return None

    def resolve_plan(self, payload: SubscriptionPayload) -> Plan | None:
        """Plan from explicit metadata first, then the product id table."""
        for candidate in (payload.plan, self.product_plans.get(payload.product_id or "")):
            if not candidate:
                continue
            try:
                return Plan(candidate)
            except ValueError:
                logger.warning("subscription.unknown_plan", plan=candidate)
        if payload.product_id:
            logger.info("subscription.unmapped_product", product_id=payload.product_id)
        return None

    async def apply(self, event: SubscriptionEvent | PaymentEvent) -> User | None:
        """Apply one event. A missing user is logged and ignored.

        Args:
            event: Parsed subscription or payment event

        Returns:
            The updated user, or None when no user matched
        """
        user = await self.find_user(event.payload)
        if user is None:
            logger.warning(
                "subscription.user_not_found",
                event_type=event.kind.value,
                subscription_id=event.payload.subscription_id,
                customer_id=event.payload.customer_id,
                app_user_id=event.payload.app_user_id,
            )
            return None

        if isinstance(event, SubscriptionEvent):
            action = await self._subscription_handlers[event.kind](user, event.payload)
        elif event.kind == PaymentEventKind.SUCCEEDED:
            user.subscription_status = SubscriptionStatus.ACTIVE
            action = "payment_succeeded"
        else:
            user.subscription_status = SubscriptionStatus.PAST_DUE
            action = "payment_failed"

        user.updated_at = utc_now()
        self.uow.session.add(user)
        await self.uow.audit.add(
            AuditEntry(
                user_id=user.id,
                type="subscription_change",
                action=action,
                resource_type="user",
                resource_id=str(user.id),
                details=self._audit_details(event, user),
            )
        )
        await self.uow.session.flush()

        logger.info(
            "subscription.reconciled",
            user_id=str(user.id),
            event_type=event.kind.value,
            action=action,
            plan=user.plan.value,
            status=user.subscription_status.value,
        )
        return user

    def _audit_details(self, event: SubscriptionEvent | PaymentEvent, user: User) -> dict:
        details = {
            "event": event.kind.value,
            "subscription_id": event.payload.subscription_id,
            "status": user.subscription_status.value,
            "plan": user.plan.value,
        }
        if user.current_period_end is not None:
            details["current_period_end"] = user.current_period_end.isoformat()
        if isinstance(event, PaymentEvent):
            details.update(
                payment_id=event.payload.payment_id,
                amount=event.payload.amount,
                currency=event.payload.currency,
            )
        return details

    def _store_identifiers(self, user: User, payload: SubscriptionPayload) -> None:
        user.payment_provider = PAYMENT_PROVIDER
        if payload.subscription_id:
            user.provider_subscription_id = payload.subscription_id
        if payload.customer_id:
            user.provider_customer_id = payload.customer_id

    def _store_period_end(self, user: User, payload: SubscriptionPayload) -> None:
        period_end = parse_period_end(payload.period_end)
        if period_end is not None:
            user.current_period_end = period_end

    async def _apply_snapshot(self, user: User, payload: SubscriptionPayload) -> str:
        status = map_provider_status(payload.status)
        if status is not None:
            user.subscription_status = status
        elif payload.status:
            logger.warning("subscription.unknown_status", status=payload.status)
        plan = self.resolve_plan(payload)
        if plan is not None:
            user.apply_plan(plan)
        self._store_identifiers(user, payload)
        self._store_period_end(user, payload)
        return "subscription_updated"

    async def _apply_active(self, user: User, payload: SubscriptionPayload) -> str:
        user.subscription_status = SubscriptionStatus.ACTIVE
        plan = self.resolve_plan(payload)
        if plan is not None:
            user.apply_plan(plan)
        self._store_identifiers(user, payload)
        self._store_period_end(user, payload)
        return "subscription_activated"

    async def _apply_renewed(self, user: User, payload: SubscriptionPayload) -> str:
        user.subscription_status = SubscriptionStatus.ACTIVE
        self._store_period_end(user, payload)
        return "subscription_renewed"

    async def _apply_on_hold(self, user: User, payload: SubscriptionPayload) -> str:
        user.subscription_status = SubscriptionStatus.PAST_DUE
        return "subscription_on_hold"

    async def _apply_cancelled(self, user: User, payload: SubscriptionPayload) -> str:
        user.subscription_status = SubscriptionStatus.CANCELED
        user.apply_plan(Plan.FREE)
        return "subscription_cancelled"

    async def _apply_failed(self, user: User, payload: SubscriptionPayload) -> str:
        user.subscription_status = SubscriptionStatus.CANCELED
        return "subscription_failed"

    async def _apply_expired(self, user: User, payload: SubscriptionPayload) -> str:
        user.subscription_status = SubscriptionStatus.EXPIRED
        user.apply_plan(Plan.FREE)
        return "subscription_expired"
