"""
Immediate notification of match participants.

Delivery failures never propagate out of the dispatcher: each failed
channel becomes a retry queue item instead.
"""

import time
from typing import Optional

from tracey.core.exceptions import DeliveryError
from tracey.data.models.notification import DeliveryOutcome
from tracey.data.repositories.match_repository import MatchRepository, get_match_repository
from tracey.data.repositories.notification_repository import (
    NotificationQueueRepository,
    get_notification_queue_repository,
)
from tracey.data.repositories.user_repository import UserRepository, get_user_repository
from tracey.services.email_service import EmailService, get_email_service
from tracey.services.token_manager import PushNotification, TokenManager, get_token_manager
from tracey.utils.config import NotificationSettings, get_settings
from tracey.utils.constants import (
    PUSH_ACTION_VIEW_MATCH,
    PUSH_TYPE_MATCH_FOUND,
    NotificationAudience,
    NotificationChannel,
)
from tracey.utils.logger import delivery_log, get_logger

logger = get_logger(__name__)


def build_push_notification(
    match_id: str,
    score: float,
    category: Optional[str],
    audience: NotificationAudience = NotificationAudience.OWNER,
) -> PushNotification:
    """Push title/body for one side of a match, with the deep-link payload."""
    category = category or "item"
    percent = f"{score * 100:.0f}"

    if audience == NotificationAudience.FINDER:
        title = "Someone is Looking for Your Found Item!"
        body = f"Your found {category} matches a lost item report ({percent}% match)"
    else:
        title = "Item Match Found!"
        body = f"We found a {percent}% match for your lost {category}"

    return PushNotification(
        title=title,
        body=body,
        data={
            "matchId": match_id,
            "type": PUSH_TYPE_MATCH_FOUND,
            "action": PUSH_ACTION_VIEW_MATCH,
            "score": str(score),
            "timestamp": str(int(time.time() * 1000)),
        },
    )


class NotificationDispatcher:
    """
    Notifies one participant of a match over email and push.

    Email goes only to the lost-item owner; finders are notified by push.
    """

    def __init__(
        self,
        user_repository: Optional[UserRepository] = None,
        match_repository: Optional[MatchRepository] = None,
        queue_repository: Optional[NotificationQueueRepository] = None,
        email_service: Optional[EmailService] = None,
        token_manager: Optional[TokenManager] = None,
        settings: Optional[NotificationSettings] = None,
    ) -> None:
        self._users = user_repository
        self._matches = match_repository
        self._queue = queue_repository
        self._email = email_service
        self._tokens = token_manager
        self._settings = settings or get_settings().notifications

    # -------------------------------------------------------------------------
    # Lazy collaborators
    # -------------------------------------------------------------------------

    @property
    def users(self) -> UserRepository:
        if self._users is None:
            self._users = get_user_repository()
        return self._users

    @property
    def matches(self) -> MatchRepository:
        if self._matches is None:
            self._matches = get_match_repository()
        return self._matches

    @property
    def queue(self) -> NotificationQueueRepository:
        if self._queue is None:
            self._queue = get_notification_queue_repository()
        return self._queue

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

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def notify_user(
        self,
        match_id: str,
        user_id: str,
        score: float,
        category: Optional[str],
        audience: NotificationAudience = NotificationAudience.OWNER,
    ) -> DeliveryOutcome:
        """
        Attempt immediate delivery of a match notification to one user.

        Args:
            match_id: Match being announced.
            user_id: Recipient.
            score: Similarity score of the match.
            category: Lost item category, used in the message text.
            audience: Which side of the match the recipient is on.

        Returns:
            Which channels delivered. ``skipped`` is set when the score is
            below the user's minimum and nothing was attempted.
        """
        user = await self.users.get_by_id_async(user_id)
        if user is None:
            logger.warning(f"Cannot notify unknown user {user_id} about match {match_id}")
            return DeliveryOutcome()

        prefs = user.notification_preferences.resolve(
            self._settings.default_email_enabled,
            self._settings.default_push_enabled,
            self._settings.default_min_match_score,
        )

        if score < prefs.min_match_score:
            logger.debug(
                f"Score {score:.3f} below user {user_id} minimum "
                f"{prefs.min_match_score:.2f}; not notifying"
            )
            return DeliveryOutcome(skipped=True)

        context = {"match_id": match_id, "user_id": user_id, "audience": audience.value}

        email_sent = False
        push_sent = False
        try:
            if audience == NotificationAudience.OWNER and prefs.email_enabled and user.email:
                email_sent = await self._send_email(user.email, score, category, context)

            if prefs.push_enabled:
                push_sent = await self._send_push(score, category, context)
        finally:
            await self.matches.record_delivery_async(
                match_id, email_sent=email_sent, notification_sent=push_sent
            )
        return DeliveryOutcome(email_sent=email_sent, push_sent=push_sent)

    async def _send_email(
        self, address: str, score: float, category: Optional[str], context: dict
    ) -> bool:
        try:
            await self.email.send_match_email(address, score, context["match_id"], category)
        except Exception as e:
            if not isinstance(e, DeliveryError):
                logger.exception(f"Unexpected email error for match {context['match_id']}")
            delivery_log("email_failed", {**context, "error": str(e)})
            await self._enqueue(NotificationChannel.EMAIL, context, str(e) or type(e).__name__)
            return False

        delivery_log("email_sent", context)
        return True

    async def _send_push(self, score: float, category: Optional[str], context: dict) -> bool:
        notification = build_push_notification(
            context["match_id"], score, category, NotificationAudience(context["audience"])
        )
        try:
            result = await self.tokens.send_to_user(context["user_id"], notification)
        except Exception as e:
            logger.exception(f"Unexpected push error for match {context['match_id']}")
            delivery_log("push_failed", {**context, "error": str(e)})
            await self._enqueue(NotificationChannel.FCM, context, str(e) or type(e).__name__)
            return False

        delivery_log(
            "push_sent" if result.delivered else "push_failed",
            {**context, "success": result.success, "failed": result.failed},
        )
        if result.failed > 0 or result.success == 0:
            await self._enqueue(
                NotificationChannel.FCM,
                context,
                f"{result.success} delivered, {result.failed} failed",
            )
        return result.delivered

    async def _enqueue(self, channel: NotificationChannel, context: dict, error: str) -> None:
        await self.queue.enqueue_async(
            context["match_id"],
            context["user_id"],
            channel,
            NotificationAudience(context["audience"]),
            error=error,
        )


# Singleton instance
_notification_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the notification dispatcher singleton instance."""
    global _notification_dispatcher
    if _notification_dispatcher is None:
        _notification_dispatcher = NotificationDispatcher()
    return _notification_dispatcher
