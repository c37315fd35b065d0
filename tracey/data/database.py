"""
Database connection manager for Tracey.

Provides MongoDB connection management. The core runs on the asynchronous
(Motor) client; a synchronous (PyMongo) client is kept for the CLI health
check.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote_plus

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, MongoClient
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from tracey.utils.config import get_settings
from tracey.utils.constants import (
    FCM_TOKENS_COLLECTION,
    ITEMS_COLLECTION,
    MATCHES_COLLECTION,
    NOTIFICATION_QUEUE_COLLECTION,
    USERS_COLLECTION,
)
from tracey.utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """
    Manages MongoDB database connections.

    Implements singleton pattern for connection reuse.
    """

    _instance: Optional["DatabaseManager"] = None
    _sync_client: Optional[MongoClient] = None
    _async_client: Optional[AsyncIOMotorClient] = None

    def __new__(cls) -> "DatabaseManager":
        """Ensure singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize database manager with settings."""
        if hasattr(self, "_initialized") and self._initialized:
            return

        self._settings = get_settings()
        self._db_name = self._settings.database.name
        self._uri = self._build_uri()
        self._initialized = True

    def _build_uri(self) -> str:
        """Build MongoDB connection URI from settings, URL-encoding credentials."""
        db_settings = self._settings.database

        host = db_settings.host.strip()
        if not host or any(c in host for c in [";", "&", "|", "$", "`"]):
            raise ValueError(f"Invalid database host: {host}")

        auth = ""
        if db_settings.username and db_settings.password:
            auth = f"{quote_plus(db_settings.username)}:{quote_plus(db_settings.password)}@"

        uri = f"mongodb://{auth}{host}:{db_settings.port}"
        if db_settings.replica_set:
            uri += f"/?replicaSet={quote_plus(db_settings.replica_set)}"
        return uri

    # -------------------------------------------------------------------------
    # Synchronous Client
    # -------------------------------------------------------------------------

    def get_sync_client(self) -> MongoClient:
        """Get or create synchronous MongoDB client."""
        if self._sync_client is None:
            logger.info("Creating synchronous MongoDB client")
            self._sync_client = MongoClient(
                self._uri,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=5000,
                tz_aware=True,
            )
        return self._sync_client

    def check_sync_connection(self) -> bool:
        """Check if synchronous connection is healthy."""
        try:
            self.get_sync_client().admin.command("ping")
            return True
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(f"Sync connection check failed: {e}")
            self._sync_client = None
            return False

    # -------------------------------------------------------------------------
    # Asynchronous Client
    # -------------------------------------------------------------------------

    def get_async_client(self) -> AsyncIOMotorClient:
        """Get or create asynchronous MongoDB client."""
        if self._async_client is None:
            logger.info("Creating asynchronous MongoDB client")
            self._async_client = AsyncIOMotorClient(
                self._uri,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=5000,
                maxPoolSize=50,
                minPoolSize=5,
                tz_aware=True,
            )
        return self._async_client

    def get_async_database(self) -> AsyncIOMotorDatabase:
        """Get asynchronous database instance."""
        return self.get_async_client()[self._db_name]

    def get_async_collection(self, collection_name: str) -> Any:
        """Get an asynchronous collection by name."""
        return self.get_async_database()[collection_name]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncIOMotorClientSession]:
        """
        Run a block inside a multi-document transaction.

        Commits when the block exits normally and aborts if it raises.
        Requires a replica set (``DB_REPLICA_SET``).
        """
        client = self.get_async_client()
        async with await client.start_session() as session:
            async with session.start_transaction():
                yield session

    # -------------------------------------------------------------------------
    # Lifecycle Management
    # -------------------------------------------------------------------------

    def close_all(self) -> None:
        """Close all database connections."""
        if self._sync_client:
            logger.info("Closing synchronous MongoDB client")
            self._sync_client.close()
            self._sync_client = None
        if self._async_client:
            logger.info("Closing asynchronous MongoDB client")
            self._async_client.close()
            self._async_client = None

    # -------------------------------------------------------------------------
    # Index Management
    # -------------------------------------------------------------------------

    async def ensure_indexes(self) -> None:
        """Create indexes for all collections."""
        logger.info("Ensuring database indexes")

        items = self.get_async_collection(ITEMS_COLLECTION)
        await items.create_index([("type", ASCENDING), ("status", ASCENDING)])
        await items.create_index("createdBy")
        await items.create_index("createdAt")

        matches = self.get_async_collection(MATCHES_COLLECTION)
        # One match per (lost, found) pair; search claims have no lost item
        await matches.create_index(
            [("lostItemId", ASCENDING), ("foundItemId", ASCENDING)],
            unique=True,
            partialFilterExpression={"lostItemId": {"$type": "objectId"}},
        )
        # One search claim per (found item, claimant)
        await matches.create_index(
            [("foundItemId", ASCENDING), ("lostItemUserId", ASCENDING)],
            unique=True,
            partialFilterExpression={"claimedFromSearch": True},
        )
        await matches.create_index("lostItemUserId")
        await matches.create_index("foundItemUserId")
        await matches.create_index("status")
        await matches.create_index("createdAt")

        queue = self.get_async_collection(NOTIFICATION_QUEUE_COLLECTION)
        await queue.create_index([("status", ASCENDING), ("nextRetryAt", ASCENDING)])
        await queue.create_index([("status", ASCENDING), ("leasedAt", ASCENDING)])
        await queue.create_index("matchId")
        await queue.create_index("createdAt")

        tokens = self.get_async_collection(FCM_TOKENS_COLLECTION)
        await tokens.create_index(
            [("userId", ASCENDING), ("token", ASCENDING)], unique=True
        )
        await tokens.create_index([("userId", ASCENDING), ("expiresAt", ASCENDING)])
        await tokens.create_index("lastUsedAt")

        users = self.get_async_collection(USERS_COLLECTION)
        await users.create_index("email")

        logger.info("Database indexes created successfully")


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_database_manager() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def get_async_db() -> AsyncIOMotorDatabase:
    """Convenience function to get asynchronous database."""
    return get_database_manager().get_async_database()
