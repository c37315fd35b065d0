"""
Application-wide constants for Tracey.

This module contains all constant values used throughout the matching and
notification core. Stored enum values and thresholds are contract surfaces
shared with the web client and other tooling; change them with care.
"""

from datetime import timedelta
from enum import Enum
from typing import Final


# =============================================================================
# Application Constants
# =============================================================================

APP_NAME: Final[str] = "tracey"
APP_DISPLAY_NAME: Final[str] = "Tracey Lost & Found"
VERSION: Final[str] = "0.1.0"


# =============================================================================
# Collection Names
# =============================================================================

ITEMS_COLLECTION: Final[str] = "items"
MATCHES_COLLECTION: Final[str] = "matches"
NOTIFICATION_QUEUE_COLLECTION: Final[str] = "notificationQueue"
USERS_COLLECTION: Final[str] = "users"
FCM_TOKENS_COLLECTION: Final[str] = "fcmTokens"


# =============================================================================
# Matching Constants
# =============================================================================

# Minimum cosine similarity for an AI-triggered match (inclusive)
MATCH_THRESHOLD: Final[float] = 0.70

# Minimum similarity for free-form semantic search results (inclusive)
SEARCH_SIMILARITY_THRESHOLD: Final[float] = 0.50

# Score recorded for a match created by claiming directly from search
CLAIM_FROM_SEARCH_SCORE: Final[float] = 1.0

CLAIMED_FROM_SEARCH_DESCRIPTION: Final[str] = "Claimed from search"


# =============================================================================
# Notification Constants
# =============================================================================

# Retry queue
MAX_RETRIES: Final[int] = 3
QUEUE_BATCH_SIZE: Final[int] = 10
RETRY_DELAYS: Final[tuple[timedelta, ...]] = (
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=15),
)
QUEUE_CLEANUP_DAYS: Final[int] = 7
# A processing item whose lease is older than this is considered abandoned
QUEUE_LEASE_TIMEOUT: Final[timedelta] = timedelta(minutes=5)

# Push tokens
TOKEN_EXPIRY_DAYS: Final[int] = 60
TOKEN_CLEANUP_DAYS: Final[int] = 90

# Error codes the push provider uses for tokens that will never work again
DEAD_TOKEN_ERROR_CODES: Final[frozenset[str]] = frozenset(
    {
        "messaging/invalid-registration-token",
        "messaging/registration-token-not-registered",
    }
)

# Push payload markers used by the client for deep-linking
PUSH_TYPE_MATCH_FOUND: Final[str] = "match_found"
PUSH_ACTION_VIEW_MATCH: Final[str] = "view_match"


# =============================================================================
# Enums
# =============================================================================


class ItemType(str, Enum):
    """Which side of the marketplace an item report belongs to."""

    LOST = "lost"
    FOUND = "found"

    @property
    def opposite(self) -> "ItemType":
        """The item type this one is matched against."""
        return ItemType.FOUND if self is ItemType.LOST else ItemType.LOST


class ItemStatus(str, Enum):
    """Lifecycle status of an item report."""

    OPEN = "open"
    CLAIMED = "claimed"
    DISMISSED = "dismissed"


class NotificationChannel(str, Enum):
    """Delivery channel of a queued notification."""

    EMAIL = "email"
    FCM = "fcm"


class NotificationAudience(str, Enum):
    """Which party of a match a notification is addressed to."""

    OWNER = "owner"  # the person who lost the item
    FINDER = "finder"  # the person who reported finding it
