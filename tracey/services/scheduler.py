"""
In-process scheduling of retry queue sweeps and housekeeping.

Drives ``tracey process-queue --loop`` and, when ``QUEUE_SCHEDULER_ENABLED``
is set, the API server. Deployments without a long-running process call
``/api/process-queue`` from cron instead.
"""

from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tracey.data.models.base import utc_now
from tracey.data.models.notification import QueueRunSummary
from tracey.services.notification_queue import NotificationQueueProcessor, get_queue_processor
from tracey.services.token_manager import TokenManager, get_token_manager
from tracey.utils.config import get_settings
from tracey.utils.logger import get_logger

logger = get_logger(__name__)

SWEEP_JOB_ID = "process_notification_queue"
CLEANUP_JOB_ID = "cleanup_notifications"
CLEANUP_INTERVAL_HOURS = 24


def build_scheduler(
    processor: Optional[NotificationQueueProcessor] = None,
    token_manager: Optional[TokenManager] = None,
    interval_seconds: Optional[int] = None,
    include_cleanup: bool = True,
    on_sweep: Optional[Callable[[QueueRunSummary], None]] = None,
) -> AsyncIOScheduler:
    """
    Create an unstarted scheduler with the queue sweep job.

    Args:
        processor: Queue processor to sweep with (defaults to the singleton)
        token_manager: Used by the cleanup job (defaults to the singleton)
        interval_seconds: Seconds between sweeps (defaults to settings)
        include_cleanup: Also add a daily job that deletes finished queue
            items and stale push tokens
        on_sweep: Called with each sweep's summary

    Returns:
        The scheduler; call ``start()`` from inside a running event loop.
    """
    settings = get_settings().queue
    processor = processor or get_queue_processor()
    interval_seconds = interval_seconds or settings.poll_interval_seconds

    async def sweep() -> None:
        try:
            summary = await processor.process_queue()
        except Exception:
            logger.exception("Scheduled queue sweep failed")
            return
        if on_sweep is not None:
            on_sweep(summary)

    async def cleanup() -> None:
        tokens = token_manager or get_token_manager()
        try:
            await processor.cleanup(settings.cleanup_days)
            await tokens.cleanup_expired_tokens()
        except Exception:
            logger.exception("Scheduled cleanup failed")

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        sweep,
        "interval",
        seconds=interval_seconds,
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
        next_run_time=utc_now(),
    )
    if include_cleanup:
        scheduler.add_job(
            cleanup,
            "interval",
            hours=CLEANUP_INTERVAL_HOURS,
            id=CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
        )

    logger.info(f"Queue sweep scheduled every {interval_seconds}s")
    return scheduler
