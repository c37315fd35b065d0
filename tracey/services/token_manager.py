"""
Push token management.

Keeps each user's registered device tokens fresh, fans a notification out
to every valid token, and prunes tokens the push provider reports as dead.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from tracey.core.exceptions import DeliveryError
from tracey.data.models.base import utc_now
from tracey.data.models.user import DeviceInfo, PushToken
from tracey.data.repositories.token_repository import (
    PushTokenRepository,
    get_push_token_repository,
)
from tracey.services.push_provider import PushMessage, PushProvider, get_push_provider
from tracey.utils.constants import (
    DEAD_TOKEN_ERROR_CODES,
    TOKEN_CLEANUP_DAYS,
    TOKEN_EXPIRY_DAYS,
)
from tracey.utils.logger import delivery_log, get_logger

logger = get_logger(__name__)


@dataclass
class PushNotification:
    """Title, body and data payload shared by every device of a user."""

    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class SendResult:
    """How many of a user's devices accepted a notification."""

    success: int = 0
    failed: int = 0

    @property
    def delivered(self) -> bool:
        return self.success > 0


class TokenManager:
    """
    Registers push tokens and sends notifications to all of a user's devices.

    Collaborators are optional; defaults are resolved lazily.
    """

    def __init__(
        self,
        repository: Optional[PushTokenRepository] = None,
        provider: Optional[PushProvider] = None,
    ) -> None:
        self._repository = repository
        self._provider = provider

    @property
    def repository(self) -> PushTokenRepository:
        if self._repository is None:
            self._repository = get_push_token_repository()
        return self._repository

    @property
    def provider(self) -> PushProvider:
        if self._provider is None:
            self._provider = get_push_provider()
        return self._provider

    async def register_token(
        self, user_id: str, token: str, device_info: Optional[DeviceInfo] = None
    ) -> PushToken:
        """
        Register a device token for a user.

        Re-registering an existing token extends its expiry instead of
        creating a duplicate.
        """
        expires_at = utc_now() + timedelta(days=TOKEN_EXPIRY_DAYS)
        stored = await self.repository.upsert_async(user_id, token, expires_at, device_info)
        logger.info(f"Registered push token for user {user_id}")
        return stored

    async def get_valid_tokens(self, user_id: str) -> list[str]:
        """Get the user's unexpired tokens."""
        tokens = await self.repository.get_valid_for_user_async(user_id, utc_now())
        return [t.token for t in tokens]

    async def send_to_user(self, user_id: str, notification: PushNotification) -> SendResult:
        """
        Send one notification to every valid device of a user.

        Tokens the provider reports as invalid or unregistered are deleted.
        A provider-level failure counts every token as failed.
        """
        tokens = await self.get_valid_tokens(user_id)
        if not tokens:
            return SendResult(0, 0)

        messages = [
            PushMessage(
                token=token,
                title=notification.title,
                body=notification.body,
                data=dict(notification.data),
            )
            for token in tokens
        ]

        try:
            results = await self.provider.send_each(messages)
        except DeliveryError as e:
            logger.warning(f"Push send to user {user_id} failed: {e}")
            return SendResult(0, len(tokens))
        except Exception:
            logger.exception(f"Push provider raised for user {user_id}")
            return SendResult(0, len(tokens))

        dead = [r.token for r in results if not r.success and r.error_code in DEAD_TOKEN_ERROR_CODES]
        if dead:
            removed = await self.remove_tokens(user_id, dead)
            delivery_log("push_tokens_pruned", {"user_id": user_id, "count": removed})

        success = sum(1 for r in results if r.success)
        return SendResult(success=success, failed=len(results) - success)

    async def remove_tokens(self, user_id: str, tokens: list[str]) -> int:
        """Delete specific tokens of a user."""
        removed = await self.repository.delete_tokens_async(user_id, tokens)
        logger.info(f"Removed {removed} push token(s) for user {user_id}")
        return removed

    async def cleanup_expired_tokens(self, older_than_days: int = TOKEN_CLEANUP_DAYS) -> int:
        """Delete tokens that have not been used for ``older_than_days``."""
        cutoff = utc_now() - timedelta(days=older_than_days)
        removed = await self.repository.delete_unused_since_async(cutoff)
        logger.info(f"Cleaned up {removed} stale push token(s)")
        return removed


# Singleton instance
_token_manager: Optional[TokenManager] = None


def get_token_manager() -> TokenManager:
    """Get the token manager singleton instance."""
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenManager()
    return _token_manager
