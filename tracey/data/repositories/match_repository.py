"""
Match repository for Tracey.

Provides data access for lost/found match documents. A (lost, found) pair
is stored at most once; delivery flags only ever move from false to true.
"""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClientSession
from pymongo.errors import DuplicateKeyError

from tracey.data.models.base import utc_now
from tracey.data.models.match import Match, MatchStatus
from tracey.utils.constants import MATCHES_COLLECTION
from tracey.utils.logger import get_logger

from .base import BaseRepository, IdValue

logger = get_logger(__name__)


class MatchRepository(BaseRepository[Match]):
    """Repository for match document operations."""

    @property
    def collection_name(self) -> str:
        return MATCHES_COLLECTION

    @property
    def model_class(self) -> type[Match]:
        return Match

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    async def get_by_pair_async(
        self, lost_item_id: IdValue, found_item_id: IdValue
    ) -> Optional[Match]:
        """Get the match for a specific lost/found pair."""
        return await self.find_one_async(
            {
                "lostItemId": self._to_id(lost_item_id),
                "foundItemId": self._to_id(found_item_id),
            }
        )

    async def get_search_claim_async(
        self, found_item_id: IdValue, user_id: str
    ) -> Optional[Match]:
        """Get a match a user already holds on a found item (any origin)."""
        return await self.find_one_async(
            {"foundItemId": self._to_id(found_item_id), "lostItemUserId": user_id}
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def create_if_absent_async(self, match: Match) -> tuple[Match, bool]:
        """
        Insert a match unless its (lost, found) pair already exists.

        Search claims have no lost item; for those the claimant may hold
        only one claim per found item.

        Returns:
            The stored match and whether this call created it.
        """
        try:
            return await self.create_async(match), True
        except DuplicateKeyError:
            if match.claimed_from_search:
                existing = await self.find_one_async(
                    {
                        "foundItemId": self._to_id(match.found_item_id),
                        "lostItemUserId": match.lost_item_user_id,
                        "claimedFromSearch": True,
                    }
                )
            else:
                existing = await self.get_by_pair_async(match.lost_item_id, match.found_item_id)
            if existing is None:
                raise
            logger.debug(
                f"Match already exists for lost={match.lost_item_id or match.lost_item_user_id} "
                f"found={match.found_item_id}: {existing.id}"
            )
            return existing, False

    async def record_delivery_async(
        self,
        match_id: IdValue,
        email_sent: bool = False,
        notification_sent: bool = False,
    ) -> bool:
        """
        Record a notification attempt on a match.

        Flags are merged with ``$max`` so a failed delivery to one recipient
        never clears an earlier success for another.
        """
        return await self.update_raw_async(
            {"_id": self._to_id(match_id)},
            {
                "$max": {"emailSent": email_sent, "notificationSent": notification_sent},
                "$set": {"lastNotificationAttempt": utc_now()},
            },
        )

    async def set_status_async(
        self,
        match_id: IdValue,
        status: MatchStatus,
        session: Optional[AsyncIOMotorClientSession] = None,
        expected: Optional[MatchStatus] = None,
    ) -> bool:
        """
        Set the status of a match.

        With ``expected``, only a match currently in that status is updated;
        returns False if it had already moved on.
        """
        query = {"_id": self._to_id(match_id)}
        if expected is not None:
            query["status"] = expected.value
        return await self.update_raw_async(
            query, {"$set": {"status": status.value}}, session=session
        )

    async def mark_viewed_async(self, match_id: IdValue) -> bool:
        """Set ``viewedAt`` unless the match was already viewed."""
        return await self.update_raw_async(
            {"_id": self._to_id(match_id), "viewedAt": None},
            {"$set": {"viewedAt": utc_now()}},
        )


# Singleton instance
_match_repository: Optional[MatchRepository] = None


def get_match_repository() -> MatchRepository:
    """Get the match repository singleton instance."""
    global _match_repository
    if _match_repository is None:
        _match_repository = MatchRepository()
    return _match_repository
