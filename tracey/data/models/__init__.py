"""
Pydantic data models for Tracey.

This module provides all data models used throughout the core: stored
documents, embedded documents, and result schemas.
"""

# Base models
from .base import BaseDocument, EmbeddedModel, PyObjectId, TimestampMixin, utc_now

# Item models
from .item import GeoPoint, Item, ItemSearchHit

# Match models
from .match import ClaimResult, Match, MatchOutcome, MatchStatus

# Notification models
from .notification import (
    DeliveryOutcome,
    NotificationQueueItem,
    QueueItemStatus,
    QueueRunSummary,
)

# User models
from .user import (
    DeviceInfo,
    NotificationPreferences,
    PushToken,
    ResolvedPreferences,
    User,
)

__all__ = [
    # Base
    "BaseDocument",
    "EmbeddedModel",
    "PyObjectId",
    "TimestampMixin",
    "utc_now",
    # Item
    "GeoPoint",
    "Item",
    "ItemSearchHit",
    # Match
    "ClaimResult",
    "Match",
    "MatchOutcome",
    "MatchStatus",
    # Notification
    "DeliveryOutcome",
    "NotificationQueueItem",
    "QueueItemStatus",
    "QueueRunSummary",
    # User
    "DeviceInfo",
    "NotificationPreferences",
    "PushToken",
    "ResolvedPreferences",
    "User",
]
