"""
Push token repository for Tracey.

One document per (user, token) pair.
"""

from datetime import datetime
from typing import Optional

from tracey.data.models.base import utc_now
from tracey.data.models.user import DeviceInfo, PushToken
from tracey.utils.constants import FCM_TOKENS_COLLECTION
from tracey.utils.logger import get_logger

from .base import BaseRepository

logger = get_logger(__name__)


class PushTokenRepository(BaseRepository[PushToken]):
    """Repository for registered push tokens."""

    @property
    def collection_name(self) -> str:
        return FCM_TOKENS_COLLECTION

    @property
    def model_class(self) -> type[PushToken]:
        return PushToken

    async def upsert_async(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        device_info: Optional[DeviceInfo] = None,
    ) -> PushToken:
        """
        Register a token, or refresh it if the user already registered it.

        Stored device info is kept when none is given.
        """
        now = utc_now()
        update: dict = {
            "$set": {"lastUsedAt": now, "expiresAt": expires_at},
            "$setOnInsert": {"userId": user_id, "token": token, "createdAt": now},
        }
        if device_info is not None:
            update["$set"]["deviceInfo"] = device_info.model_dump(by_alias=True)

        collection = self._get_collection()
        update["$set"]["updatedAt"] = now
        await collection.update_one(
            {"userId": user_id, "token": token}, update, upsert=True
        )
        return await self.find_one_async({"userId": user_id, "token": token})

    async def get_valid_for_user_async(self, user_id: str, now: datetime) -> list[PushToken]:
        """Get a user's tokens that have not expired."""
        return await self.find_async(
            {"userId": user_id, "expiresAt": {"$gt": now}}, limit=0
        )

    async def delete_tokens_async(self, user_id: str, tokens: list[str]) -> int:
        """Delete specific tokens of a user."""
        if not tokens:
            return 0
        return await self.delete_many_async({"userId": user_id, "token": {"$in": tokens}})

    async def delete_unused_since_async(self, cutoff: datetime) -> int:
        """Delete tokens not used since ``cutoff``."""
        return await self.delete_many_async({"lastUsedAt": {"$lt": cutoff}})


# Singleton instance
_push_token_repository: Optional[PushTokenRepository] = None


def get_push_token_repository() -> PushTokenRepository:
    """Get the push token repository singleton instance."""
    global _push_token_repository
    if _push_token_repository is None:
        _push_token_repository = PushTokenRepository()
    return _push_token_repository
