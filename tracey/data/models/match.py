"""
Match data models for Tracey.

A match pairs a lost report with a found report. It is the durable record
of a proposed reunion: it is written before any notification is attempted
and survives even if every delivery fails.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .base import BaseDocument, PyObjectId, utc_now


class MatchStatus(str, Enum):
    """Status of a match. Claimed and dismissed are terminal."""

    PENDING = "pending"
    CLAIMED = "claimed"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self is not MatchStatus.PENDING


class Match(BaseDocument):
    """
    Main match document (``matches`` collection).

    ``lost_item_id`` is None when the owner claimed a found item straight
    from search results without ever filing a lost report.
    """

    # References
    lost_item_id: Optional[PyObjectId] = None
    found_item_id: PyObjectId
    lost_item_user_id: str
    found_item_user_id: str

    # Denormalized for list views and notification templates
    lost_item_category: Optional[str] = None
    lost_item_description: Optional[str] = None
    found_item_description: Optional[str] = None

    similarity_score: float = Field(0.0, ge=0, le=1)
    status: MatchStatus = MatchStatus.PENDING
    claimed_from_search: bool = False

    # Delivery state
    notification_sent: bool = False
    email_sent: bool = False
    last_notification_attempt: Optional[datetime] = None

    viewed_at: Optional[datetime] = None

    @property
    def score_percent(self) -> int:
        """Similarity as a whole percentage for user-facing text."""
        return round(self.similarity_score * 100)

    def involves(self, user_id: str) -> bool:
        """Check if the user is one of the two parties of the match."""
        return user_id in (self.lost_item_user_id, self.found_item_user_id)

    class Settings:
        """MongoDB collection settings."""

        name = "matches"
        indexes = [
            [("lostItemId", 1), ("foundItemId", 1)],  # Unique when lostItemId is set
            [("foundItemId", 1), ("lostItemUserId", 1)],  # Unique for search claims
            "lostItemUserId",
            "foundItemUserId",
            "status",
            "createdAt",
        ]


class MatchOutcome(BaseModel):
    """Per-match entry of a matching run's response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    match_id: str
    lost_item_id: Optional[str] = None
    found_item_id: str
    lost_user_id: str
    found_user_id: str
    score: float
    status: str = "match_created"
    email_sent: bool = False
    push_sent: bool = False
    error: Optional[str] = None


class ClaimResult(BaseModel):
    """Result of a claim operation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    match_id: str
    created: bool = False
    message: str
    claimed_at: datetime = Field(default_factory=utc_now)
