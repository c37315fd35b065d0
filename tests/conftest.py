"""
Shared test fixtures for the Tracey test suite.

Sets environment variables before any tracey imports so settings and
logging stay local, then provides in-memory repository doubles, recording
delivery collaborators, and factory fixtures for documents.
"""

import os

# === Set environment BEFORE any tracey imports ===
os.environ.setdefault("APP_ENVIRONMENT", "testing")
os.environ.setdefault("DB_NAME", "tracey_test")
os.environ.setdefault("LOG_FILE_OUTPUT", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("QUEUE_SCHEDULER_ENABLED", "false")

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Optional

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from tracey.core.exceptions import EmailDeliveryError, PushDeliveryError
from tracey.core.matching.matching_engine import MatchingEngine
from tracey.data.models import (
    DeviceInfo,
    Item,
    Match,
    MatchStatus,
    NotificationPreferences,
    NotificationQueueItem,
    PushToken,
    QueueItemStatus,
    User,
    utc_now,
)
from tracey.services.claim_service import ClaimService
from tracey.services.notification_dispatcher import NotificationDispatcher
from tracey.services.notification_queue import NotificationQueueProcessor
from tracey.services.push_provider import PushMessage, PushSendResult
from tracey.services.token_manager import TokenManager
from tracey.utils.config import MatchingSettings, NotificationSettings
from tracey.utils.constants import (
    ItemStatus,
    ItemType,
    NotificationAudience,
    NotificationChannel,
)


# ---------------------------------------------------------------------------
# In-memory repository doubles
# ---------------------------------------------------------------------------


class _MemoryStore:
    """Documents keyed by id; reads hand out copies like a real database."""

    def __init__(self) -> None:
        self.docs: dict[Any, Any] = {}

    def put(self, model):
        if model.id is None:
            model.id = ObjectId()
        self.docs[model.id] = model.model_copy(deep=True)
        return model

    def get(self, id_value):
        key = ObjectId(id_value) if isinstance(id_value, str) and ObjectId.is_valid(id_value) else id_value
        doc = self.docs.get(key)
        return doc.model_copy(deep=True) if doc is not None else None

    def raw(self, id_value):
        return self.docs[ObjectId(id_value) if isinstance(id_value, str) else id_value]


class FakeItemRepository(_MemoryStore):
    def add(self, item: Item) -> Item:
        return self.put(item)

    async def get_by_id_async(self, id_value, session=None) -> Optional[Item]:
        return self.get(id_value)

    async def get_open_with_embedding_async(self, item_type: ItemType, limit: int = 0):
        return [
            i.model_copy(deep=True)
            for i in self.docs.values()
            if i.type == item_type and i.status == ItemStatus.OPEN and i.embedding
        ]

    async def get_searchable_async(self, limit: int = 0):
        return [
            i.model_copy(deep=True)
            for i in self.docs.values()
            if i.status == ItemStatus.OPEN and i.embedding
        ]

    async def set_status_async(self, item_ids, status: ItemStatus, session=None) -> int:
        count = 0
        for item_id in item_ids:
            if item_id in self.docs:
                self.docs[item_id].status = status.value
                count += 1
        return count


class FakeMatchRepository(_MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_for_found_ids: set = set()
        self.status_sessions: list = []

    async def get_by_id_async(self, id_value, session=None) -> Optional[Match]:
        return self.get(id_value)

    async def get_by_pair_async(self, lost_item_id, found_item_id) -> Optional[Match]:
        for m in self.docs.values():
            if m.lost_item_id == lost_item_id and m.found_item_id == found_item_id:
                return m.model_copy(deep=True)
        return None

    async def get_search_claim_async(self, found_item_id, user_id) -> Optional[Match]:
        for m in self.docs.values():
            if m.found_item_id == found_item_id and m.lost_item_user_id == user_id:
                return m.model_copy(deep=True)
        return None

    async def create_async(self, match: Match, session=None) -> Match:
        if match.found_item_id in self.fail_for_found_ids:
            raise PyMongoError("write failed")
        return self.put(match)

    async def create_if_absent_async(self, match: Match) -> tuple[Match, bool]:
        if match.claimed_from_search:
            for m in self.docs.values():
                if (
                    m.claimed_from_search
                    and m.found_item_id == match.found_item_id
                    and m.lost_item_user_id == match.lost_item_user_id
                ):
                    return m.model_copy(deep=True), False
        elif match.lost_item_id is not None:
            existing = await self.get_by_pair_async(match.lost_item_id, match.found_item_id)
            if existing is not None:
                return existing, False
        return await self.create_async(match), True

    async def record_delivery_async(
        self, match_id, email_sent: bool = False, notification_sent: bool = False
    ) -> bool:
        match = self.docs.get(match_id if isinstance(match_id, ObjectId) else ObjectId(match_id))
        if match is None:
            return False
        match.email_sent = match.email_sent or email_sent
        match.notification_sent = match.notification_sent or notification_sent
        match.last_notification_attempt = utc_now()
        return True

    async def set_status_async(
        self, match_id, status: MatchStatus, session=None, expected: Optional[MatchStatus] = None
    ) -> bool:
        self.status_sessions.append(session)
        match = self.docs.get(match_id)
        if match is None or (expected is not None and match.status != expected):
            return False
        match.status = status.value
        return True

    async def mark_viewed_async(self, match_id) -> bool:
        match = self.docs.get(match_id)
        if match is None or match.viewed_at is not None:
            return False
        match.viewed_at = utc_now()
        return True


class FakeQueueRepository(_MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.claim_denied: set = set()

    @property
    def items(self) -> list[NotificationQueueItem]:
        return list(self.docs.values())

    async def create_async(self, item: NotificationQueueItem) -> NotificationQueueItem:
        return self.put(item)

    async def enqueue_async(
        self,
        match_id,
        user_id: str,
        channel: NotificationChannel,
        audience: NotificationAudience = NotificationAudience.OWNER,
        error: Optional[str] = None,
    ) -> NotificationQueueItem:
        return self.put(
            NotificationQueueItem(
                match_id=ObjectId(str(match_id)),
                user_id=user_id,
                type=channel,
                audience=audience,
                last_error=error,
            )
        )

    def _claimable(self, item: NotificationQueueItem, stale_before: datetime) -> bool:
        if item.status == QueueItemStatus.PENDING:
            return True
        return (
            item.status == QueueItemStatus.PROCESSING
            and item.leased_at is not None
            and item.leased_at <= stale_before
        )

    async def get_due_async(
        self, now: datetime, max_retries: int, limit: int, stale_before: datetime
    ):
        due = [
            i
            for i in self.docs.values()
            if self._claimable(i, stale_before)
            and (i.status != QueueItemStatus.PENDING or i.next_retry_at <= now)
            and i.retry_count < max_retries
        ]
        due.sort(key=lambda i: i.next_retry_at)
        return [i.model_copy(deep=True) for i in due[:limit]]

    async def claim_async(self, item_id, stale_before: datetime) -> bool:
        item = self.docs.get(item_id)
        if item is None or item_id in self.claim_denied or not self._claimable(item, stale_before):
            return False
        item.status = QueueItemStatus.PROCESSING.value
        item.leased_at = utc_now()
        return True

    async def mark_completed_async(self, item_id) -> bool:
        item = self.docs[item_id]
        item.status = QueueItemStatus.COMPLETED.value
        item.last_error = None
        return True

    async def mark_failed_async(self, item_id, error: str, retry_count: Optional[int] = None) -> bool:
        item = self.docs[item_id]
        item.status = QueueItemStatus.FAILED.value
        item.last_error = error
        if retry_count is not None:
            item.retry_count = retry_count
        return True

    async def reschedule_async(self, item_id, retry_count: int, next_retry_at: datetime, error: str) -> bool:
        item = self.docs[item_id]
        item.status = QueueItemStatus.PENDING.value
        item.retry_count = retry_count
        item.next_retry_at = next_retry_at
        item.last_error = error
        return True

    async def delete_finished_before_async(self, cutoff: datetime) -> int:
        doomed = [
            key
            for key, item in self.docs.items()
            if item.status in (QueueItemStatus.COMPLETED, QueueItemStatus.FAILED)
            and item.created_at <= cutoff
        ]
        for key in doomed:
            del self.docs[key]
        return len(doomed)


class FakeUserRepository:
    def __init__(self) -> None:
        self.users: dict[str, User] = {}

    def add(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def get_by_id_async(self, id_value, session=None) -> Optional[User]:
        user = self.users.get(str(id_value))
        return user.model_copy(deep=True) if user is not None else None


class FakeTokenRepository:
    def __init__(self) -> None:
        self.tokens: dict[tuple[str, str], PushToken] = {}

    async def upsert_async(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        device_info: Optional[DeviceInfo] = None,
    ) -> PushToken:
        now = utc_now()
        existing = self.tokens.get((user_id, token))
        if existing is None:
            existing = PushToken(
                id=ObjectId(),
                user_id=user_id,
                token=token,
                device_info=device_info,
                created_at=now,
                last_used_at=now,
                expires_at=expires_at,
            )
            self.tokens[(user_id, token)] = existing
        else:
            existing.last_used_at = now
            existing.expires_at = expires_at
            if device_info is not None:
                existing.device_info = device_info
        return existing.model_copy(deep=True)

    async def get_valid_for_user_async(self, user_id: str, now: datetime) -> list[PushToken]:
        return [t for (uid, _), t in self.tokens.items() if uid == user_id and t.expires_at > now]

    async def delete_tokens_async(self, user_id: str, tokens: list[str]) -> int:
        removed = 0
        for token in tokens:
            if self.tokens.pop((user_id, token), None) is not None:
                removed += 1
        return removed

    async def delete_unused_since_async(self, cutoff: datetime) -> int:
        doomed = [key for key, t in self.tokens.items() if t.last_used_at < cutoff]
        for key in doomed:
            del self.tokens[key]
        return len(doomed)


# ---------------------------------------------------------------------------
# Recording delivery collaborators
# ---------------------------------------------------------------------------


class FakePushProvider:
    """Accepts every token unless told otherwise per token."""

    def __init__(self) -> None:
        self.batches: list[list[PushMessage]] = []
        self.errors: dict[str, str] = {}
        self.raise_error: bool = False
        # Unexpected exceptions raised when a batch includes the token
        self.crash_tokens: dict[str, Exception] = {}

    @property
    def sent(self) -> list[PushMessage]:
        return [m for batch in self.batches for m in batch]

    async def send_each(self, messages: list[PushMessage]) -> list[PushSendResult]:
        self.batches.append(list(messages))
        if self.raise_error:
            raise PushDeliveryError("provider unavailable")
        for m in messages:
            if m.token in self.crash_tokens:
                raise self.crash_tokens[m.token]
        return [
            PushSendResult(
                token=m.token,
                success=m.token not in self.errors,
                error_code=self.errors.get(m.token),
            )
            for m in messages
        ]


class FakeEmailService:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail: bool = False

    async def send_match_email(self, to, score, match_id=None, category=None) -> str:
        if self.fail:
            raise EmailDeliveryError("Email provider returned 500")
        self.sent.append({"to": to, "score": score, "match_id": match_id, "category": category})
        return f"msg-{len(self.sent)}"


class RecordingTransaction:
    """Stands in for ``DatabaseManager.transaction``."""

    def __init__(self) -> None:
        self.entered = 0
        self.session = object()

    @asynccontextmanager
    async def __call__(self):
        self.entered += 1
        yield self.session


# ---------------------------------------------------------------------------
# Collaborator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def item_repo():
    return FakeItemRepository()


@pytest.fixture
def match_repo():
    return FakeMatchRepository()


@pytest.fixture
def queue_repo():
    return FakeQueueRepository()


@pytest.fixture
def user_repo():
    return FakeUserRepository()


@pytest.fixture
def token_repo():
    return FakeTokenRepository()


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def transaction():
    return RecordingTransaction()


@pytest.fixture
def notification_settings():
    return NotificationSettings(
        default_email_enabled=True,
        default_push_enabled=True,
        default_min_match_score=0.70,
        app_url="https://tracey.test",
    )


@pytest.fixture
def token_manager(token_repo, push_provider):
    return TokenManager(repository=token_repo, provider=push_provider)


@pytest.fixture
def dispatcher(user_repo, match_repo, queue_repo, email_service, token_manager, notification_settings):
    return NotificationDispatcher(
        user_repository=user_repo,
        match_repository=match_repo,
        queue_repository=queue_repo,
        email_service=email_service,
        token_manager=token_manager,
        settings=notification_settings,
    )


@pytest.fixture
def matching_engine(item_repo, match_repo, dispatcher):
    return MatchingEngine(
        item_repository=item_repo,
        match_repository=match_repo,
        dispatcher=dispatcher,
        settings=MatchingSettings(search_limit=5, embedding_dimension=3),
    )


@pytest.fixture
def queue_processor(queue_repo, match_repo, user_repo, email_service, token_manager):
    return NotificationQueueProcessor(
        queue_repository=queue_repo,
        match_repository=match_repo,
        user_repository=user_repo,
        email_service=email_service,
        token_manager=token_manager,
    )


@pytest.fixture
def claim_service(match_repo, item_repo, transaction):
    return ClaimService(
        match_repository=match_repo, item_repository=item_repo, transaction=transaction
    )


# ---------------------------------------------------------------------------
# Document factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_item(item_repo):
    """Factory that stores and returns an Item."""

    def _factory(
        item_type: ItemType = ItemType.LOST,
        embedding: Optional[list[float]] = None,
        created_by: str = "owner-1",
        category: str = "Wallet",
        status: ItemStatus = ItemStatus.OPEN,
        **kwargs,
    ) -> Item:
        item = Item(
            type=item_type,
            embedding=[1.0, 0.0, 0.0] if embedding is None else embedding,
            created_by=created_by,
            category=category,
            ai_description=kwargs.pop("ai_description", f"A {category.lower()}"),
            status=status,
            **kwargs,
        )
        return item_repo.add(item)

    return _factory


@pytest.fixture
def make_user(user_repo):
    """Factory that stores and returns a User."""

    def _factory(
        uid: str = "owner-1",
        email: Optional[str] = "owner@example.com",
        email_enabled: Optional[bool] = None,
        push_enabled: Optional[bool] = None,
        min_match_score: Optional[float] = None,
    ) -> User:
        return user_repo.add(
            User(
                id=uid,
                email=email,
                name=uid.title(),
                notification_preferences=NotificationPreferences(
                    email_enabled=email_enabled,
                    push_enabled=push_enabled,
                    min_match_score=min_match_score,
                ),
            )
        )

    return _factory


@pytest.fixture
def make_match(match_repo):
    """Factory that stores and returns a pending Match."""

    def _factory(
        lost_user: str = "owner-1",
        found_user: str = "finder-1",
        score: float = 0.85,
        status: MatchStatus = MatchStatus.PENDING,
        **kwargs,
    ) -> Match:
        match = Match(
            lost_item_id=kwargs.pop("lost_item_id", ObjectId()),
            found_item_id=kwargs.pop("found_item_id", ObjectId()),
            lost_item_user_id=lost_user,
            found_item_user_id=found_user,
            lost_item_category=kwargs.pop("category", "Wallet"),
            similarity_score=score,
            status=status,
            **kwargs,
        )
        return match_repo.put(match)

    return _factory


@pytest.fixture
def register_tokens(token_repo):
    """Register push tokens for a user, valid for 60 days."""

    async def _register(user_id: str, *tokens: str, expires_in: timedelta = timedelta(days=60)):
        for token in tokens:
            await token_repo.upsert_async(user_id, token, utc_now() + expires_in)

    return _register
