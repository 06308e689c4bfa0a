"""User entity with embedded subscription and quota state."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from swapmylook.core.timezone import utc_now


class Plan(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


# Monthly generation ceiling per plan
PLAN_QUOTAS: dict[Plan, int] = {
    Plan.FREE: 1,
    Plan.BASIC: 10,
    Plan.PREMIUM: 50,
    Plan.PRO: 100,
}


def next_quota_reset(now: datetime) -> datetime:
    """First instant of the month following ``now``."""
    if now.month == 12:
        return datetime(now.year + 1, 1, 1)
    return datetime(now.year, now.month + 1, 1)


class User(SQLModel, table=True):
    """User account; subscription fields are mutated by the reconciler or explicit user action."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(max_length=320, unique=True, index=True)
    name: str = Field(default="", max_length=255)

    plan: Plan = Field(default=Plan.FREE)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIALING)
    payment_provider: Optional[str] = Field(default=None, max_length=50)
    provider_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)
    provider_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)
    current_period_end: Optional[datetime] = Field(default=None)
    trial_used: bool = Field(default=False)

    monthly_quota: int = Field(default=PLAN_QUOTAS[Plan.FREE], ge=0)
    used_this_month: int = Field(default=0, ge=0)
    quota_reset_at: datetime = Field(default_factory=lambda: next_quota_reset(utc_now()))

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def apply_plan(self, plan: Plan) -> None:
        """Set plan and its quota ceiling."""
        self.plan = plan
        self.monthly_quota = PLAN_QUOTAS[plan]

    def roll_quota_period(self, now: datetime) -> None:
        """Reset monthly usage once the reset date has passed."""
        if now >= self.quota_reset_at:
            self.used_this_month = 0
            self.quota_reset_at = next_quota_reset(now)

    def has_available_quota(self, now: datetime) -> bool:
        self.roll_quota_period(now)
        return self.used_this_month < self.monthly_quota

    def consume_quota(self, now: datetime) -> None:
        self.roll_quota_period(now)
        self.used_this_month += 1
        self.trial_used = self.trial_used or self.subscription_status == SubscriptionStatus.TRIALING
