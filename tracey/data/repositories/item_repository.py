"""
Item repository for Tracey.

Provides data access for lost and found item reports, including the write
performed once AI analysis of an item completes.
"""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClientSession

from tracey.data.models.item import Item
from tracey.utils.constants import ITEMS_COLLECTION, ItemStatus, ItemType
from tracey.utils.logger import get_logger

from .base import BaseRepository, IdValue

logger = get_logger(__name__)


class ItemRepository(BaseRepository[Item]):
    """Repository for item document operations."""

    @property
    def collection_name(self) -> str:
        return ITEMS_COLLECTION

    @property
    def model_class(self) -> type[Item]:
        return Item

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    async def get_open_with_embedding_async(
        self, item_type: ItemType, limit: int = 0
    ) -> list[Item]:
        """
        Get open items of one type that already have an embedding.

        These are the only items that take part in matching and search.
        """
        return await self.find_async(
            {
                "type": item_type.value,
                "status": ItemStatus.OPEN.value,
                "embedding.0": {"$exists": True},
            },
            limit=limit,
        )

    async def get_searchable_async(self, limit: int = 0) -> list[Item]:
        """Get open items of either type that have an embedding."""
        return await self.find_async(
            {"status": ItemStatus.OPEN.value, "embedding.0": {"$exists": True}},
            limit=limit,
        )

    # -------------------------------------------------------------------------
    # Update Operations
    # -------------------------------------------------------------------------

    async def set_status_async(
        self,
        item_ids: list[IdValue],
        status: ItemStatus,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> int:
        """Set the status of several items. Returns how many were found."""
        if not item_ids:
            return 0
        collection = self._get_collection()
        result = await collection.update_many(
            {"_id": {"$in": [self._to_id(i) for i in item_ids]}},
            {"$set": {"status": status.value}},
            session=session,
        )
        return result.matched_count


# Singleton instance
_item_repository: Optional[ItemRepository] = None


def get_item_repository() -> ItemRepository:
    """Get the item repository singleton instance."""
    global _item_repository
    if _item_repository is None:
        _item_repository = ItemRepository()
    return _item_repository
