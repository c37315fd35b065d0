"""
Retry queue processing for failed notification deliveries.

Each queued item moves pending -> processing -> completed, back to pending
with a later ``nextRetryAt``, or failed once its retries are exhausted.
Runs are triggered by the in-process scheduler (API server or CLI loop)
or by cron hitting the HTTP endpoint.
"""

import asyncio
from datetime import timedelta
from typing import Optional

from tracey.core.exceptions import DeliveryError
from tracey.data.models.base import utc_now
from tracey.data.models.notification import (
    NotificationQueueItem,
    QueueItemStatus,
    QueueRunSummary,
)
from tracey.data.repositories.match_repository import MatchRepository, get_match_repository
from tracey.data.repositories.notification_repository import (
    NotificationQueueRepository,
    get_notification_queue_repository,
)
from tracey.data.repositories.user_repository import UserRepository, get_user_repository
from tracey.services.email_service import EmailService, get_email_service
from tracey.services.notification_dispatcher import build_push_notification
from tracey.services.token_manager import TokenManager, get_token_manager
from tracey.utils.constants import (
    MAX_RETRIES,
    QUEUE_BATCH_SIZE,
    QUEUE_CLEANUP_DAYS,
    QUEUE_LEASE_TIMEOUT,
    RETRY_DELAYS,
    NotificationAudience,
    NotificationChannel,
)
from tracey.utils.logger import delivery_log, get_logger

logger = get_logger(__name__)


class PermanentDeliveryFailure(Exception):
    """The item can never be delivered; mark it failed without retrying."""


def retry_delay(retry_count: int) -> timedelta:
    """Backoff before attempt number ``retry_count`` (1-based), clamped to the last step."""
    index = min(max(retry_count, 1), len(RETRY_DELAYS)) - 1
    return RETRY_DELAYS[index]


class NotificationQueueProcessor:
    """
    Sweeps due queue items and re-attempts delivery.

    One sweep at a time per processor; a call made while a sweep is running
    returns immediately. Across processes, each item is leased with a
    conditional pending -> processing update so only one worker sends it;
    a lease older than ``QUEUE_LEASE_TIMEOUT`` can be taken over.
    """

    def __init__(
        self,
        queue_repository: Optional[NotificationQueueRepository] = None,
        match_repository: Optional[MatchRepository] = None,
        user_repository: Optional[UserRepository] = None,
        email_service: Optional[EmailService] = None,
        token_manager: Optional[TokenManager] = None,
        batch_size: int = QUEUE_BATCH_SIZE,
    ) -> None:
        self._queue = queue_repository
        self._matches = match_repository
        self._users = user_repository
        self._email = email_service
        self._tokens = token_manager
        self.batch_size = batch_size
        self._lock = asyncio.Lock()

    @property
    def queue(self) -> NotificationQueueRepository:
        if self._queue is None:
            self._queue = get_notification_queue_repository()
        return self._queue

    @property
    def matches(self) -> MatchRepository:
        if self._matches is None:
            self._matches = get_match_repository()
        return self._matches

    @property
    def users(self) -> UserRepository:
        if self._users is None:
            self._users = get_user_repository()
        return self._users

    @property
    def email(self) -> EmailService:
        if self._email is None:
            self._email = get_email_service()
        return self._email

    @property
    def tokens(self) -> TokenManager:
        if self._tokens is None:
            self._tokens = get_token_manager()
        return self._tokens

    @property
    def is_processing(self) -> bool:
        return self._lock.locked()

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    async def process_queue(self) -> QueueRunSummary:
        """
        Process one batch of due queue items.

        Returns:
            Counts of what happened; ``skipped`` if a sweep was already running.
        """
        if self._lock.locked():
            logger.debug("Queue sweep already in progress; skipping")
            return QueueRunSummary(skipped=True)

        async with self._lock:
            summary = QueueRunSummary()
            now = utc_now()
            stale_before = now - QUEUE_LEASE_TIMEOUT
            due = await self.queue.get_due_async(now, MAX_RETRIES, self.batch_size, stale_before)
            if due:
                logger.info(f"Processing {len(due)} queued notification(s)")

            for item in due:
                try:
                    if not await self.queue.claim_async(item.id, stale_before):
                        logger.debug(f"Queue item {item.id} already claimed elsewhere")
                        continue
                    if item.status == QueueItemStatus.PROCESSING:
                        logger.warning(f"Queue item {item.id} lease expired; retrying it")
                    summary.processed += 1
                    outcome = await self._process_item(item)
                except Exception:
                    # Item stays leased and is picked up again once the lease expires
                    logger.exception(f"Queue item {item.id} could not be processed")
                    summary.errors += 1
                    continue

                if outcome == "completed":
                    summary.succeeded += 1
                elif outcome == "rescheduled":
                    summary.rescheduled += 1
                else:
                    summary.failed += 1

            return summary

    async def _process_item(self, item: NotificationQueueItem) -> str:
        """Deliver one leased item and record the result."""
        try:
            delivered = await self._deliver(item)
        except PermanentDeliveryFailure as e:
            await self._mark_failed(item, str(e))
            return "failed"
        except DeliveryError as e:
            return await self._schedule_retry(item, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error processing queue item {item.id}")
            return await self._schedule_retry(item, str(e) or type(e).__name__)

        if not delivered:
            return await self._schedule_retry(item, "Delivery unsuccessful")

        await self.queue.mark_completed_async(item.id)
        if item.type == NotificationChannel.EMAIL:
            await self.matches.record_delivery_async(item.match_id, email_sent=True)
        else:
            await self.matches.record_delivery_async(item.match_id, notification_sent=True)
        delivery_log(
            "retry_delivered",
            {"queue_item": str(item.id), "channel": item.type, "attempt": item.retry_count + 1},
        )
        return "completed"

    async def _deliver(self, item: NotificationQueueItem) -> bool:
        match = await self.matches.get_by_id_async(item.match_id)
        if match is None:
            raise PermanentDeliveryFailure("Match not found")

        user = await self.users.get_by_id_async(item.user_id)
        if user is None:
            raise PermanentDeliveryFailure("User not found")

        if item.type == NotificationChannel.EMAIL:
            if not user.email:
                raise PermanentDeliveryFailure("User has no email address")
            await self.email.send_match_email(
                user.email, match.similarity_score, match.id_str, match.lost_item_category
            )
            return True

        notification = build_push_notification(
            match.id_str,
            match.similarity_score,
            match.lost_item_category,
            NotificationAudience(item.audience),
        )
        result = await self.tokens.send_to_user(item.user_id, notification)
        return result.delivered

    async def _schedule_retry(self, item: NotificationQueueItem, error: str) -> str:
        new_count = item.retry_count + 1
        if new_count >= MAX_RETRIES:
            await self._mark_failed(item, error, retry_count=new_count)
            return "failed"

        next_retry_at = utc_now() + retry_delay(new_count)
        await self.queue.reschedule_async(item.id, new_count, next_retry_at, error)
        logger.info(
            f"Queue item {item.id} rescheduled (attempt {new_count}/{MAX_RETRIES}) "
            f"for {next_retry_at.isoformat()}"
        )
        return "rescheduled"

    async def _mark_failed(
        self, item: NotificationQueueItem, reason: str, retry_count: Optional[int] = None
    ) -> None:
        await self.queue.mark_failed_async(item.id, reason, retry_count=retry_count)
        logger.warning(f"Queue item {item.id} failed permanently: {reason}")
        delivery_log(
            "retry_abandoned",
            {"queue_item": str(item.id), "channel": item.type, "reason": reason},
        )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def cleanup(self, older_than_days: int = QUEUE_CLEANUP_DAYS) -> int:
        """Delete completed and failed items older than ``older_than_days``."""
        cutoff = utc_now() - timedelta(days=older_than_days)
        removed = await self.queue.delete_finished_before_async(cutoff)
        logger.info(f"Removed {removed} finished queue item(s)")
        return removed


# Singleton instance
_queue_processor: Optional[NotificationQueueProcessor] = None


def get_queue_processor() -> NotificationQueueProcessor:
    """Get the queue processor singleton instance."""
    global _queue_processor
    if _queue_processor is None:
        _queue_processor = NotificationQueueProcessor()
    return _queue_processor
