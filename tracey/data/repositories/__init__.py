"""
Database repositories for Tracey data access.

This module provides repository classes for all database collections,
implementing the repository pattern for clean data access.
"""

# Base repository
from .base import BaseRepository

# Collection repositories
from .item_repository import ItemRepository, get_item_repository
from .match_repository import MatchRepository, get_match_repository
from .notification_repository import (
    NotificationQueueRepository,
    get_notification_queue_repository,
)
from .token_repository import PushTokenRepository, get_push_token_repository
from .user_repository import UserRepository, get_user_repository

__all__ = [
    # Base
    "BaseRepository",
    # Item
    "ItemRepository",
    "get_item_repository",
    # Match
    "MatchRepository",
    "get_match_repository",
    # Notification queue
    "NotificationQueueRepository",
    "get_notification_queue_repository",
    # Push tokens
    "PushTokenRepository",
    "get_push_token_repository",
    # User
    "UserRepository",
    "get_user_repository",
]
