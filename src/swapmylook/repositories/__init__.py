"""Repository layer.

Provides data access abstractions for all domain entities.
Each repository is self-contained and receives its session from the Unit of Work.
"""

from swapmylook.repositories.asset import ImageAssetRepository
from swapmylook.repositories.audit import AuditRepository
from swapmylook.repositories.job import GenerationJobRepository
from swapmylook.repositories.user import UserRepository
from swapmylook.repositories.webhook_receipt import WebhookReceiptRepository
from swapmylook.repositories.work_queue import QueueStats, RetryDecision, WorkQueueRepository

__all__ = [
    "UserRepository",
    "ImageAssetRepository",
    "GenerationJobRepository",
    "WorkQueueRepository",
    "WebhookReceiptRepository",
    "AuditRepository",
    "RetryDecision",
    "QueueStats",
]
