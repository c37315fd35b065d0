"""
Item data models for Tracey.

An item is one lost or found report. The report flow creates it with an
empty embedding; the AI analysis collaborator later fills in the
embedding, category, description and colour tags.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from tracey.utils.constants import ItemStatus, ItemType

from .base import BaseDocument, EmbeddedModel


class GeoPoint(EmbeddedModel):
    """Where the item was lost or found."""

    lat: float = 0.0
    lng: float = 0.0


class Item(BaseDocument):
    """Main item document (``items`` collection)."""

    type: ItemType
    status: ItemStatus = ItemStatus.OPEN

    # Filled by AI analysis
    category: str = "unknown"
    ai_description: str = ""
    color_tags: list[str] = Field(default_factory=list)
    embedding: list[float] = Field(default_factory=list)
    contains_sensitive_info: bool = False

    # Media
    images: list[str] = Field(default_factory=list)
    blurred_images: list[str] = Field(default_factory=list)

    location: Optional[GeoPoint] = None
    created_by: str

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_shape(cls, data: Any) -> Any:
        """
        Fold older document shapes into the current one.

        Early reports stored a single ``imageUrl`` string and sometimes a
        null ``embedding``/``colorTags``.
        """
        if not isinstance(data, dict):
            return data
        data = dict(data)

        image_url = data.pop("imageUrl", None)
        images = data.get("images") or []
        if image_url and image_url not in images:
            images = [image_url, *images]
        data["images"] = images

        for key in ("embedding", "colorTags", "blurredImages"):
            if key in data and data[key] is None:
                data[key] = []
        return data

    @property
    def has_embedding(self) -> bool:
        """Check if AI analysis has produced an embedding."""
        return len(self.embedding) > 0

    @property
    def is_matchable(self) -> bool:
        """Only open items with an embedding take part in matching."""
        return self.status == ItemStatus.OPEN and self.has_embedding

    class Settings:
        """MongoDB collection settings."""

        name = "items"
        indexes = [
            [("type", 1), ("status", 1)],
            "createdBy",
            "createdAt",
        ]


class ItemSearchHit(BaseModel):
    """An item returned by semantic search, without its embedding."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_id: str
    score: float
    type: ItemType
    category: str
    ai_description: str
    color_tags: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    created_by: str
