"""
Notification queue repository for Tracey.

Stores deferred delivery attempts and the state transitions the queue
processor applies to them.
"""

from datetime import datetime
from typing import Optional

from tracey.data.models.base import utc_now
from tracey.data.models.notification import NotificationQueueItem, QueueItemStatus
from tracey.utils.constants import (
    NOTIFICATION_QUEUE_COLLECTION,
    NotificationAudience,
    NotificationChannel,
)
from tracey.utils.logger import get_logger

from .base import BaseRepository, IdValue

logger = get_logger(__name__)


class NotificationQueueRepository(BaseRepository[NotificationQueueItem]):
    """Repository for notification queue operations."""

    @property
    def collection_name(self) -> str:
        return NOTIFICATION_QUEUE_COLLECTION

    @property
    def model_class(self) -> type[NotificationQueueItem]:
        return NotificationQueueItem

    async def enqueue_async(
        self,
        match_id: IdValue,
        user_id: str,
        channel: NotificationChannel,
        audience: NotificationAudience = NotificationAudience.OWNER,
        error: Optional[str] = None,
    ) -> NotificationQueueItem:
        """Queue a delivery for immediate retry."""
        item = NotificationQueueItem(
            match_id=self._to_id(match_id),
            user_id=user_id,
            type=channel,
            audience=audience,
            next_retry_at=utc_now(),
            last_error=error,
        )
        item = await self.create_async(item)
        logger.info(f"Queued {channel.value} retry for user {user_id}, match {match_id}")
        return item

    async def get_due_async(
        self, now: datetime, max_retries: int, limit: int, stale_before: datetime
    ) -> list[NotificationQueueItem]:
        """
        Get items ready for an attempt, oldest schedule first.

        That is pending items whose retry time has come, plus processing
        items leased on or before ``stale_before`` by a worker that never
        finished them.
        """
        return await self.find_async(
            {
                "$or": [
                    {
                        "status": QueueItemStatus.PENDING.value,
                        "nextRetryAt": {"$lte": now},
                    },
                    {
                        "status": QueueItemStatus.PROCESSING.value,
                        "leasedAt": {"$lte": stale_before},
                    },
                ],
                "retryCount": {"$lt": max_retries},
            },
            limit=limit,
            sort_by="nextRetryAt",
            sort_order=1,
        )

    async def claim_async(self, item_id: IdValue, stale_before: datetime) -> bool:
        """
        Lease an item for processing.

        Pending items and processing items with an expired lease can be
        claimed. Returns False if another worker claimed it first.
        """
        return await self.update_raw_async(
            {
                "_id": self._to_id(item_id),
                "$or": [
                    {"status": QueueItemStatus.PENDING.value},
                    {
                        "status": QueueItemStatus.PROCESSING.value,
                        "leasedAt": {"$lte": stale_before},
                    },
                ],
            },
            {"$set": {"status": QueueItemStatus.PROCESSING.value, "leasedAt": utc_now()}},
        )

    async def mark_completed_async(self, item_id: IdValue) -> bool:
        return await self.update_async(
            item_id, {"status": QueueItemStatus.COMPLETED.value, "lastError": None}
        )

    async def mark_failed_async(
        self, item_id: IdValue, error: str, retry_count: Optional[int] = None
    ) -> bool:
        """Mark an item permanently failed."""
        update = {"status": QueueItemStatus.FAILED.value, "lastError": error}
        if retry_count is not None:
            update["retryCount"] = retry_count
        return await self.update_async(item_id, update)

    async def reschedule_async(
        self, item_id: IdValue, retry_count: int, next_retry_at: datetime, error: str
    ) -> bool:
        """Put an item back to pending for a later attempt."""
        return await self.update_async(
            item_id,
            {
                "status": QueueItemStatus.PENDING.value,
                "retryCount": retry_count,
                "nextRetryAt": next_retry_at,
                "lastError": error,
            },
        )

    async def delete_finished_before_async(self, cutoff: datetime) -> int:
        """Delete completed and failed items created on or before ``cutoff``."""
        return await self.delete_many_async(
            {
                "status": {
                    "$in": [QueueItemStatus.COMPLETED.value, QueueItemStatus.FAILED.value]
                },
                "createdAt": {"$lte": cutoff},
            }
        )


# Singleton instance
_notification_queue_repository: Optional[NotificationQueueRepository] = None


def get_notification_queue_repository() -> NotificationQueueRepository:
    """Get the notification queue repository singleton instance."""
    global _notification_queue_repository
    if _notification_queue_repository is None:
        _notification_queue_repository = NotificationQueueRepository()
    return _notification_queue_repository
