"""
Tests for tracey.services.notification_queue: retry sweeps, backoff and
cleanup of the notification retry queue.
"""

from datetime import timedelta

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

from tracey.data.models import NotificationQueueItem, QueueItemStatus, utc_now
from tracey.services.notification_queue import NotificationQueueProcessor, retry_delay
from tracey.utils.constants import QUEUE_LEASE_TIMEOUT, NotificationAudience, NotificationChannel


@pytest.fixture
def make_queue_item(queue_repo):
    """Factory that stores a due queue item."""

    def _factory(
        match_id,
        user_id: str = "owner-1",
        channel: NotificationChannel = NotificationChannel.EMAIL,
        **kwargs,
    ) -> NotificationQueueItem:
        kwargs.setdefault("next_retry_at", utc_now() - timedelta(seconds=1))
        return queue_repo.put(
            NotificationQueueItem(match_id=match_id, user_id=user_id, type=channel, **kwargs)
        )

    return _factory


def _stored(queue_repo, item):
    return queue_repo.raw(item.id)


# ── retry_delay ─────────────────────────────────────────────────────────────


class TestRetryDelay:
    def test_schedule(self):
        assert retry_delay(1) == timedelta(minutes=1)
        assert retry_delay(2) == timedelta(minutes=5)
        assert retry_delay(3) == timedelta(minutes=15)

    def test_clamped_low(self):
        assert retry_delay(0) == timedelta(minutes=1)

    def test_clamped_high(self):
        assert retry_delay(7) == timedelta(minutes=15)


# ── process_queue ───────────────────────────────────────────────────────────


class TestProcessQueue:
    @pytest.mark.asyncio
    async def test_email_delivered(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, match_repo, email_service
    ):
        make_user("owner-1", email="owner@example.com")
        match = make_match(category="Keys")
        item = make_queue_item(match.id)

        summary = await queue_processor.process_queue()

        assert summary.processed == 1
        assert summary.succeeded == 1
        assert _stored(queue_repo, item).status == QueueItemStatus.COMPLETED
        assert email_service.sent[0]["category"] == "Keys"
        assert (await match_repo.get_by_id_async(match.id)).email_sent

    @pytest.mark.asyncio
    async def test_push_delivered(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, register_tokens, match_repo
    ):
        make_user("owner-1")
        await register_tokens("owner-1", "tok-a")
        match = make_match()
        item = make_queue_item(match.id, channel=NotificationChannel.FCM)

        summary = await queue_processor.process_queue()

        assert summary.succeeded == 1
        assert _stored(queue_repo, item).status == QueueItemStatus.COMPLETED
        assert (await match_repo.get_by_id_async(match.id)).notification_sent

    @pytest.mark.asyncio
    async def test_finder_retry_uses_finder_text(
        self, queue_processor, make_queue_item, make_match, make_user, register_tokens, push_provider
    ):
        make_user("finder-1")
        await register_tokens("finder-1", "tok-f")
        match = make_match()
        make_queue_item(
            match.id,
            user_id="finder-1",
            channel=NotificationChannel.FCM,
            audience=NotificationAudience.FINDER,
        )

        await queue_processor.process_queue()

        assert push_provider.sent[0].title == "Someone is Looking for Your Found Item!"

    @pytest.mark.asyncio
    async def test_failure_rescheduled_with_backoff(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service
    ):
        make_user("owner-1")
        email_service.fail = True
        item = make_queue_item(make_match().id)
        before = utc_now()

        summary = await queue_processor.process_queue()

        assert summary.rescheduled == 1
        stored = _stored(queue_repo, item)
        assert stored.status == QueueItemStatus.PENDING
        assert stored.retry_count == 1
        assert stored.next_retry_at >= before + timedelta(minutes=1)
        assert stored.next_retry_at < before + timedelta(minutes=2)
        assert "500" in stored.last_error

    @pytest.mark.asyncio
    async def test_second_failure_waits_five_minutes(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service
    ):
        make_user("owner-1")
        email_service.fail = True
        item = make_queue_item(make_match().id, retry_count=1)
        before = utc_now()

        await queue_processor.process_queue()

        stored = _stored(queue_repo, item)
        assert stored.retry_count == 2
        assert stored.next_retry_at >= before + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_retries_exhausted(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service
    ):
        make_user("owner-1")
        email_service.fail = True
        item = make_queue_item(make_match().id, retry_count=2)

        summary = await queue_processor.process_queue()

        assert summary.failed == 1
        stored = _stored(queue_repo, item)
        assert stored.status == QueueItemStatus.FAILED
        assert stored.retry_count == 3

    @pytest.mark.asyncio
    async def test_no_devices_rescheduled(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user
    ):
        make_user("owner-1")
        item = make_queue_item(make_match().id, channel=NotificationChannel.FCM)

        summary = await queue_processor.process_queue()

        assert summary.rescheduled == 1
        assert _stored(queue_repo, item).last_error == "Delivery unsuccessful"

    @pytest.mark.asyncio
    async def test_unexpected_error_rescheduled(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service, monkeypatch
    ):
        async def _explode(*args, **kwargs):
            raise RuntimeError("boom")

        make_user("owner-1")
        monkeypatch.setattr(email_service, "send_match_email", _explode)
        item = make_queue_item(make_match().id)

        summary = await queue_processor.process_queue()

        assert summary.rescheduled == 1
        assert _stored(queue_repo, item).last_error == "boom"

    @pytest.mark.asyncio
    async def test_missing_match_fails_permanently(self, queue_processor, queue_repo, make_queue_item, make_user):
        make_user("owner-1")
        item = make_queue_item(ObjectId())

        summary = await queue_processor.process_queue()

        assert summary.failed == 1
        stored = _stored(queue_repo, item)
        assert stored.status == QueueItemStatus.FAILED
        assert stored.retry_count == 0
        assert stored.last_error == "Match not found"

    @pytest.mark.asyncio
    async def test_missing_user_fails_permanently(self, queue_processor, queue_repo, make_queue_item, make_match):
        item = make_queue_item(make_match().id, user_id="ghost")

        await queue_processor.process_queue()

        assert _stored(queue_repo, item).last_error == "User not found"

    @pytest.mark.asyncio
    async def test_user_without_email_fails_permanently(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user
    ):
        make_user("owner-1", email=None)
        item = make_queue_item(make_match().id)

        await queue_processor.process_queue()

        stored = _stored(queue_repo, item)
        assert stored.status == QueueItemStatus.FAILED
        assert stored.last_error == "User has no email address"

    @pytest.mark.asyncio
    async def test_future_items_not_processed(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user
    ):
        make_user("owner-1")
        item = make_queue_item(make_match().id, next_retry_at=utc_now() + timedelta(minutes=5))

        summary = await queue_processor.process_queue()

        assert summary.processed == 0
        assert _stored(queue_repo, item).status == QueueItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_batch_size_respected(
        self, queue_repo, match_repo, user_repo, email_service, token_manager, make_queue_item, make_match, make_user
    ):
        make_user("owner-1")
        match = make_match()
        for _ in range(4):
            make_queue_item(match.id)
        processor = NotificationQueueProcessor(
            queue_repository=queue_repo,
            match_repository=match_repo,
            user_repository=user_repo,
            email_service=email_service,
            token_manager=token_manager,
            batch_size=3,
        )

        summary = await processor.process_queue()

        assert summary.processed == 3
        assert len(email_service.sent) == 3

    @pytest.mark.asyncio
    async def test_item_leased_elsewhere_is_skipped(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service
    ):
        make_user("owner-1")
        item = make_queue_item(make_match().id)
        queue_repo.claim_denied.add(item.id)

        summary = await queue_processor.process_queue()

        assert summary.processed == 0
        assert email_service.sent == []

    @pytest.mark.asyncio
    async def test_store_error_does_not_abort_sweep(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service, monkeypatch
    ):
        make_user("owner-1")
        match = make_match()
        first = make_queue_item(match.id, next_retry_at=utc_now() - timedelta(minutes=2))
        second = make_queue_item(match.id, next_retry_at=utc_now() - timedelta(minutes=1))
        mark_completed = queue_repo.mark_completed_async

        async def _flaky_mark_completed(item_id):
            if item_id == first.id:
                raise AutoReconnect("primary stepped down")
            return await mark_completed(item_id)

        monkeypatch.setattr(queue_repo, "mark_completed_async", _flaky_mark_completed)

        summary = await queue_processor.process_queue()

        assert summary.processed == 2
        assert summary.succeeded == 1
        assert summary.errors == 1
        assert len(email_service.sent) == 2
        assert _stored(queue_repo, second).status == QueueItemStatus.COMPLETED
        # left leased until the lease expires
        assert _stored(queue_repo, first).status == QueueItemStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_claim_error_does_not_abort_sweep(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service, monkeypatch
    ):
        make_user("owner-1")
        match = make_match()
        first = make_queue_item(match.id, next_retry_at=utc_now() - timedelta(minutes=2))
        make_queue_item(match.id)
        claim = queue_repo.claim_async

        async def _flaky_claim(item_id, stale_before):
            if item_id == first.id:
                raise AutoReconnect("connection reset")
            return await claim(item_id, stale_before)

        monkeypatch.setattr(queue_repo, "claim_async", _flaky_claim)

        summary = await queue_processor.process_queue()

        assert summary.errors == 1
        assert summary.succeeded == 1
        assert len(email_service.sent) == 1

    @pytest.mark.asyncio
    async def test_expired_lease_is_retried(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service
    ):
        make_user("owner-1")
        item = make_queue_item(
            make_match().id,
            status=QueueItemStatus.PROCESSING,
            leased_at=utc_now() - QUEUE_LEASE_TIMEOUT - timedelta(seconds=1),
        )

        summary = await queue_processor.process_queue()

        assert summary.succeeded == 1
        assert len(email_service.sent) == 1
        assert _stored(queue_repo, item).status == QueueItemStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_live_lease_is_left_alone(
        self, queue_processor, queue_repo, make_queue_item, make_match, make_user, email_service
    ):
        make_user("owner-1")
        item = make_queue_item(
            make_match().id,
            status=QueueItemStatus.PROCESSING,
            leased_at=utc_now() - timedelta(minutes=1),
        )

        summary = await queue_processor.process_queue()

        assert summary.processed == 0
        assert email_service.sent == []
        assert _stored(queue_repo, item).status == QueueItemStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_claim_stamps_lease(self, queue_processor, queue_repo, make_queue_item, make_match, make_user):
        make_user("owner-1")
        item = make_queue_item(make_match().id)
        before = utc_now()

        await queue_processor.process_queue()

        assert _stored(queue_repo, item).leased_at >= before

    @pytest.mark.asyncio
    async def test_concurrent_sweep_skipped(self, queue_processor, make_queue_item, make_match, email_service):
        make_queue_item(make_match().id)

        async with queue_processor._lock:
            assert queue_processor.is_processing
            summary = await queue_processor.process_queue()

        assert summary.skipped
        assert summary.processed == 0
        assert email_service.sent == []


# ── cleanup ─────────────────────────────────────────────────────────────────


class TestCleanup:
    @pytest.mark.asyncio
    async def test_removes_old_finished_items_only(self, queue_processor, queue_repo, make_queue_item):
        old = utc_now() - timedelta(days=8)
        match_id = ObjectId()
        make_queue_item(match_id, status=QueueItemStatus.COMPLETED, created_at=old)
        make_queue_item(match_id, status=QueueItemStatus.FAILED, created_at=old)
        pending = make_queue_item(match_id, created_at=old)
        recent = make_queue_item(match_id, status=QueueItemStatus.COMPLETED)

        removed = await queue_processor.cleanup()

        assert removed == 2
        assert {str(i.id) for i in queue_repo.items} == {str(pending.id), str(recent.id)}
