"""
Base repository class providing common CRUD operations.

All collection-specific repositories inherit from this base class.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorCollection
from pymongo.results import DeleteResult, InsertOneResult, UpdateResult

from tracey.data.database import get_database_manager
from tracey.data.models.base import BaseDocument, utc_now
from tracey.utils.logger import get_logger

logger = get_logger(__name__)

# Type variable for document models
T = TypeVar("T", bound=BaseDocument)

IdValue = str | ObjectId


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository providing common database operations.

    Subclasses must define the collection name and model class. Every
    method takes an optional ``session`` so callers can group writes in a
    transaction.
    """

    @property
    @abstractmethod
    def collection_name(self) -> str:
        """Name of the MongoDB collection."""
        pass

    @property
    @abstractmethod
    def model_class(self) -> type[T]:
        """Pydantic model class for this repository."""
        pass

    def __init__(self) -> None:
        """Initialize repository with database connection."""
        self._db_manager = get_database_manager()

    # -------------------------------------------------------------------------
    # Collection Access
    # -------------------------------------------------------------------------

    def _get_collection(self) -> AsyncIOMotorCollection:
        """Get asynchronous collection instance."""
        return self._db_manager.get_async_collection(self.collection_name)

    # -------------------------------------------------------------------------
    # Document Conversion
    # -------------------------------------------------------------------------

    def _to_model(self, document: Optional[dict[str, Any]]) -> Optional[T]:
        """Convert MongoDB document to Pydantic model."""
        if document is None:
            return None
        return self.model_class.model_validate(document)

    def _to_models(self, documents: list[dict[str, Any]]) -> list[T]:
        """Convert list of MongoDB documents to Pydantic models."""
        return [self._to_model(doc) for doc in documents if doc is not None]

    def _to_document(self, model: T) -> dict[str, Any]:
        """Convert Pydantic model to MongoDB document."""
        return model.model_dump_mongo()

    def _to_id(self, id_value: IdValue) -> Any:
        """Convert an id to its stored form. ObjectId unless overridden."""
        if isinstance(id_value, ObjectId):
            return id_value
        return ObjectId(id_value)

    @staticmethod
    def is_valid_id(id_value: Any) -> bool:
        """Check whether a value can be used as an ObjectId."""
        return isinstance(id_value, ObjectId) or (
            isinstance(id_value, str) and ObjectId.is_valid(id_value)
        )

    # -------------------------------------------------------------------------
    # CRUD Operations
    # -------------------------------------------------------------------------

    async def create_async(
        self, model: T, session: Optional[AsyncIOMotorClientSession] = None
    ) -> T:
        """Create a new document."""
        collection = self._get_collection()
        now = utc_now()
        model.created_at = now
        model.updated_at = now
        document = self._to_document(model)

        result: InsertOneResult = await collection.insert_one(document, session=session)
        model.id = result.inserted_id
        logger.debug(f"Created {self.collection_name} document: {result.inserted_id}")
        return model

    async def get_by_id_async(
        self, id_value: IdValue, session: Optional[AsyncIOMotorClientSession] = None
    ) -> Optional[T]:
        """Get a document by its ID."""
        collection = self._get_collection()
        document = await collection.find_one(
            {"_id": self._to_id(id_value)}, session=session
        )
        return self._to_model(document)

    async def find_async(
        self,
        query: dict[str, Any],
        skip: int = 0,
        limit: int = 100,
        sort_by: Optional[str] = None,
        sort_order: int = -1,
    ) -> list[T]:
        """Find documents matching a query. ``limit=0`` returns all."""
        collection = self._get_collection()
        cursor = collection.find(query).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        cursor = cursor.sort(sort_by or "createdAt", sort_order)

        documents = await cursor.to_list(length=limit or None)
        return self._to_models(documents)

    async def find_one_async(
        self,
        query: dict[str, Any],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> Optional[T]:
        """Find a single document matching a query."""
        collection = self._get_collection()
        document = await collection.find_one(query, session=session)
        return self._to_model(document)

    async def update_async(
        self,
        id_value: IdValue,
        update_data: dict[str, Any],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> bool:
        """``$set`` fields on a document by ID. Returns whether it matched."""
        return await self.update_raw_async(
            {"_id": self._to_id(id_value)},
            {"$set": dict(update_data)},
            session=session,
        )

    async def update_raw_async(
        self,
        query: dict[str, Any],
        update: dict[str, Any],
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> bool:
        """Apply an arbitrary update document to the first match of ``query``."""
        collection = self._get_collection()
        update = dict(update)
        update["$set"] = {**update.get("$set", {}), "updatedAt": utc_now()}

        result: UpdateResult = await collection.update_one(query, update, session=session)
        if result.matched_count > 0:
            logger.debug(f"Updated {self.collection_name} document matching {query}")
            return True
        return False

    async def delete_many_async(self, query: dict[str, Any]) -> int:
        """Delete all documents matching a query."""
        collection = self._get_collection()
        result: DeleteResult = await collection.delete_many(query)
        logger.debug(f"Deleted {result.deleted_count} {self.collection_name} documents")
        return result.deleted_count
