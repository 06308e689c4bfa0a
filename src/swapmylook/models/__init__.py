"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from swapmylook.models.asset import AssetKind, ImageAsset
from swapmylook.models.audit import AuditEntry
from swapmylook.models.job import GenerationJob, InvalidStateTransition, JobStatus
from swapmylook.models.queue_item import WorkQueueItem
from swapmylook.models.user import PLAN_QUOTAS, Plan, SubscriptionStatus, User
from swapmylook.models.webhook_receipt import ReceiptState, WebhookReceipt

__all__ = [
    "User",
    "Plan",
    "SubscriptionStatus",
    "PLAN_QUOTAS",
    "ImageAsset",
    "AssetKind",
    "GenerationJob",
    "JobStatus",
    "InvalidStateTransition",
    "WorkQueueItem",
    "WebhookReceipt",
    "ReceiptState",
    "AuditEntry",
]
