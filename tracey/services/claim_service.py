"""
Claim flow: an owner confirms a match, or claims a found item directly
from search results.
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Callable, Optional

from tracey.core.exceptions import (
    InvalidItemType,
    InvalidMatchTransition,
    ItemNotFound,
    MatchNotFound,
    SelfClaimForbidden,
    UnauthorizedClaimant,
)
from tracey.data.database import get_database_manager
from tracey.data.models.base import utc_now
from tracey.data.models.item import Item
from tracey.data.models.match import ClaimResult, Match, MatchStatus
from tracey.data.repositories.base import BaseRepository
from tracey.data.repositories.item_repository import ItemRepository, get_item_repository
from tracey.data.repositories.match_repository import MatchRepository, get_match_repository
from tracey.utils.constants import (
    CLAIM_FROM_SEARCH_SCORE,
    CLAIMED_FROM_SEARCH_DESCRIPTION,
    ItemStatus,
    ItemType,
)
from tracey.utils.logger import get_logger

logger = get_logger(__name__)

TransactionFactory = Callable[[], AbstractAsyncContextManager[Any]]


class ClaimService:
    """Applies claim, dismiss and view transitions to matches."""

    def __init__(
        self,
        match_repository: Optional[MatchRepository] = None,
        item_repository: Optional[ItemRepository] = None,
        transaction: Optional[TransactionFactory] = None,
    ) -> None:
        self._matches = match_repository
        self._items = item_repository
        self._transaction = transaction

    @property
    def matches(self) -> MatchRepository:
        if self._matches is None:
            self._matches = get_match_repository()
        return self._matches

    @property
    def items(self) -> ItemRepository:
        if self._items is None:
            self._items = get_item_repository()
        return self._items

    @property
    def transaction(self) -> TransactionFactory:
        if self._transaction is None:
            self._transaction = get_database_manager().transaction
        return self._transaction

    async def _load_item(self, item_id: str) -> Item:
        if not BaseRepository.is_valid_id(item_id):
            raise ItemNotFound(item_id)
        item = await self.items.get_by_id_async(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    async def _load_match(self, match_id: str) -> Match:
        if not BaseRepository.is_valid_id(match_id):
            raise MatchNotFound(match_id)
        match = await self.matches.get_by_id_async(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        return match

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def claim_from_search(self, item_id: str, user_id: str) -> ClaimResult:
        """
        Claim a found item without a lost report.

        Creates an already-claimed match with no lost item. Claiming the
        same item twice returns the first match.
        """
        item = await self._load_item(item_id)
        if item.type != ItemType.FOUND:
            raise InvalidItemType(
                f"Only found items can be claimed from search (item {item_id} is {item.type})",
                resource_id=item_id,
            )
        if item.created_by == user_id:
            raise SelfClaimForbidden(item_id)

        existing = await self.matches.get_search_claim_async(item.id, user_id)
        if existing is not None:
            return ClaimResult(
                match_id=existing.id_str,
                created=False,
                message="You have already claimed this item",
            )

        now = utc_now()
        match = Match(
            lost_item_id=None,
            found_item_id=item.id,
            lost_item_user_id=user_id,
            found_item_user_id=item.created_by,
            lost_item_category=item.category or "Unknown",
            lost_item_description=CLAIMED_FROM_SEARCH_DESCRIPTION,
            found_item_description=item.ai_description,
            similarity_score=CLAIM_FROM_SEARCH_SCORE,
            status=MatchStatus.CLAIMED,
            claimed_from_search=True,
            viewed_at=now,
        )
        match, created = await self.matches.create_if_absent_async(match)
        if not created:
            return ClaimResult(
                match_id=match.id_str,
                created=False,
                message="You have already claimed this item",
            )

        logger.info(f"User {user_id} claimed found item {item_id} from search: {match.id}")
        return ClaimResult(
            match_id=match.id_str, created=True, message="Item claimed successfully"
        )

    async def claim_match(self, match_id: str, user_id: str) -> ClaimResult:
        """
        Confirm a match as the lost-item owner.

        The match and both linked items become claimed in one transaction.
        """
        match = await self._load_match(match_id)

        if match.found_item_user_id == user_id:
            raise SelfClaimForbidden(match_id)
        if match.lost_item_user_id != user_id:
            raise UnauthorizedClaimant(match_id)
        if match.status == MatchStatus.DISMISSED:
            raise InvalidMatchTransition(match_id, match.status, MatchStatus.CLAIMED.value)
        if match.status == MatchStatus.CLAIMED:
            return ClaimResult(match_id=match_id, message="Match already claimed")

        item_ids = [i for i in (match.lost_item_id, match.found_item_id) if i is not None]
        async with self.transaction() as session:
            claimed = await self.matches.set_status_async(
                match.id, MatchStatus.CLAIMED, session=session, expected=MatchStatus.PENDING
            )
            if not claimed:
                # Dismissed or claimed since it was loaded; abort the transaction
                raise InvalidMatchTransition(
                    match_id, "no longer pending", MatchStatus.CLAIMED.value
                )
            await self.items.set_status_async(item_ids, ItemStatus.CLAIMED, session=session)

        logger.info(f"Match {match_id} claimed by {user_id}")
        return ClaimResult(match_id=match_id, message="Match claimed successfully")

    async def dismiss_match(self, match_id: str, user_id: str) -> ClaimResult:
        """Dismiss a pending match. Either party may dismiss."""
        match = await self._load_match(match_id)

        if not match.involves(user_id):
            raise UnauthorizedClaimant(match_id)
        if match.status == MatchStatus.CLAIMED:
            raise InvalidMatchTransition(match_id, match.status, MatchStatus.DISMISSED.value)
        if match.status == MatchStatus.DISMISSED:
            return ClaimResult(match_id=match_id, message="Match already dismissed")

        dismissed = await self.matches.set_status_async(
            match.id, MatchStatus.DISMISSED, expected=MatchStatus.PENDING
        )
        if not dismissed:
            raise InvalidMatchTransition(
                match_id, "no longer pending", MatchStatus.DISMISSED.value
            )
        logger.info(f"Match {match_id} dismissed by {user_id}")
        return ClaimResult(match_id=match_id, message="Match dismissed")

    async def mark_viewed(self, match_id: str, user_id: str) -> bool:
        """Record the first time a participant opened the match."""
        match = await self._load_match(match_id)
        if not match.involves(user_id):
            raise UnauthorizedClaimant(match_id)
        if match.viewed_at is not None:
            return False
        return await self.matches.mark_viewed_async(match.id)


# Singleton instance
_claim_service: Optional[ClaimService] = None


def get_claim_service() -> ClaimService:
    """Get the claim service singleton instance."""
    global _claim_service
    if _claim_service is None:
        _claim_service = ClaimService()
    return _claim_service
