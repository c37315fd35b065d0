"""
Notification queue models for Tracey.

A queue item is one deferred delivery attempt for one channel of one
recipient of one match.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from tracey.utils.constants import MAX_RETRIES, NotificationAudience, NotificationChannel

from .base import BaseDocument, PyObjectId, utc_now


class QueueItemStatus(str, Enum):
    """Lifecycle of a queued delivery."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationQueueItem(BaseDocument):
    """Deferred delivery (``notificationQueue`` collection)."""

    match_id: PyObjectId
    user_id: str
    type: NotificationChannel
    audience: NotificationAudience = NotificationAudience.OWNER
    status: QueueItemStatus = QueueItemStatus.PENDING
    retry_count: int = Field(0, ge=0, le=MAX_RETRIES)
    next_retry_at: datetime = Field(default_factory=utc_now)
    last_error: Optional[str] = None
    leased_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (QueueItemStatus.COMPLETED, QueueItemStatus.FAILED)

    class Settings:
        """MongoDB collection settings."""

        name = "notificationQueue"
        indexes = [
            [("status", 1), ("nextRetryAt", 1)],
            [("status", 1), ("leasedAt", 1)],
            "matchId",
            "createdAt",
        ]


class DeliveryOutcome(BaseModel):
    """What an immediate notification attempt achieved."""

    email_sent: bool = False
    push_sent: bool = False
    skipped: bool = False


class QueueRunSummary(BaseModel):
    """Result of one sweep of the retry queue."""

    processed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0
    errors: int = 0
    skipped: bool = False
    started_at: datetime = Field(default_factory=utc_now)
