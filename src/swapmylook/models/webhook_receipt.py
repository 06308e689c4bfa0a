"""WebhookReceipt entity - idempotency ledger for inbound webhooks."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from swapmylook.core.timezone import utc_now


class ReceiptState(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookReceipt(SQLModel, table=True):
    """One row per sender-assigned webhook id.

    The unique constraint on ``webhook_id`` is the duplicate test: the row is
    inserted before any side effect is applied, so a redelivery short-circuits
    even when the first delivery crashed mid-processing.
    """

    __tablename__ = "webhook_receipts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    provider: str = Field(max_length=50)
    webhook_id: str = Field(max_length=255, unique=True, index=True)
    event_type: Optional[str] = Field(default=None, max_length=100)
    state: ReceiptState = Field(default=ReceiptState.RECEIVED)
    error: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    processed_at: Optional[datetime] = Field(default=None)
