"""
Lost/found matching engine.

Compares a newly analysed item against every open item of the opposite
type, records a match for each pair at or above the similarity threshold,
and hands the new matches to the notification dispatcher.
"""

from dataclasses import dataclass, field
from typing import Optional

from pymongo.errors import PyMongoError

from tracey.core.exceptions import EmbeddingNotReady, InvalidItemType, ItemNotFound
from tracey.core.matching.similarity import rank_by_similarity
from tracey.data.models import Item, ItemSearchHit, Match, MatchOutcome, MatchStatus
from tracey.data.repositories.base import BaseRepository
from tracey.data.repositories.item_repository import ItemRepository, get_item_repository
from tracey.data.repositories.match_repository import MatchRepository, get_match_repository
from tracey.services.notification_dispatcher import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from tracey.utils.config import MatchingSettings, get_settings
from tracey.utils.constants import (
    MATCH_THRESHOLD,
    SEARCH_SIMILARITY_THRESHOLD,
    ItemType,
    NotificationAudience,
)
from tracey.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class MatchRunResult:
    """Complete result of matching one source item."""

    source_item_id: str
    source_type: ItemType
    success: bool = True

    # AI analysis has not produced an embedding yet; nothing was compared
    embedding_pending: bool = False

    # Candidates at or above threshold, including pairs matched earlier
    match_count: int = 0

    results: list[MatchOutcome] = field(default_factory=list)

    # Matches created by this run, in result order
    created: list[Match] = field(default_factory=list)

    @property
    def notifications_sent(self) -> int:
        """Matches created by this run, each of which gets notifications."""
        return len(self.created)

    def to_response(self) -> dict:
        return {
            "success": self.success,
            "matchCount": self.match_count,
            "notificationsSent": self.notifications_sent,
            "embeddingPending": self.embedding_pending,
            "results": [r.model_dump(by_alias=True) for r in self.results],
        }


class MatchingEngine:
    """
    Engine for pairing lost and found items by embedding similarity.

    Collaborators are optional; defaults are resolved lazily so the engine
    can be built without a database connection.
    """

    def __init__(
        self,
        item_repository: Optional[ItemRepository] = None,
        match_repository: Optional[MatchRepository] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[MatchingSettings] = None,
    ) -> None:
        """
        Initialize the matching engine.

        Args:
            item_repository: Item data access
            match_repository: Match data access
            dispatcher: Notifies match participants
            settings: Optional matching settings override
        """
        self._items = item_repository
        self._matches = match_repository
        self._dispatcher = dispatcher
        self.settings = settings or get_settings().matching

    @property
    def items(self) -> ItemRepository:
        if self._items is None:
            self._items = get_item_repository()
        return self._items

    @property
    def matches(self) -> MatchRepository:
        if self._matches is None:
            self._matches = get_match_repository()
        return self._matches

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = get_notification_dispatcher()
        return self._dispatcher

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def auto_match(self, found_item_id: str, notify: bool = True) -> MatchRunResult:
        """Match a newly reported found item against open lost items."""
        return await self.find_and_record_matches(found_item_id, ItemType.FOUND, notify=notify)

    async def auto_match_lost(self, lost_item_id: str, notify: bool = True) -> MatchRunResult:
        """Match a newly reported lost item against open found items."""
        return await self.find_and_record_matches(lost_item_id, ItemType.LOST, notify=notify)

    async def find_and_record_matches(
        self,
        source_item_id: str,
        source_type: ItemType,
        notify: bool = True,
    ) -> MatchRunResult:
        """
        Find and store every match for one item.

        Each match is stored before any notification about it is attempted,
        and a pair that was already matched is neither stored again nor
        re-notified.

        Args:
            source_item_id: Item to match
            source_type: Expected type of that item
            notify: Dispatch notifications before returning. Pass False and
                call ``notify_matches`` later to defer delivery.

        Returns:
            MatchRunResult with one outcome per candidate at or above threshold

        Raises:
            ItemNotFound: No such item
            InvalidItemType: The item is not of ``source_type``
        """
        source = await self._load_source(source_item_id, source_type)
        run = MatchRunResult(source_item_id=source_item_id, source_type=source_type)

        try:
            self._require_embedding(source)
        except EmbeddingNotReady:
            logger.info(f"Item {source_item_id} has no embedding yet; skipping matching")
            run.embedding_pending = True
            return run

        candidates = await self.items.get_open_with_embedding_async(source_type.opposite)
        ranked = rank_by_similarity(
            source.embedding, candidates, lambda item: item.embedding, MATCH_THRESHOLD
        )
        run.match_count = len(ranked)
        logger.info(
            f"{source_type.value} item {source_item_id}: {len(ranked)} of "
            f"{len(candidates)} candidate(s) at or above {MATCH_THRESHOLD:.2f}"
        )

        for candidate, score in ranked:
            await self._record_match(run, source, candidate, score)

        if notify:
            await self.notify_matches(run)
        return run

    async def notify_matches(self, run: MatchRunResult) -> MatchRunResult:
        """
        Notify participants of every match created by ``run``.

        Found-item runs notify the lost-item owner. Lost-item runs notify
        both the owner and the finder. A failure for one match does not
        stop the others.
        """
        outcomes = {r.match_id: r for r in run.results}

        for match in run.created:
            outcome = outcomes[match.id_str]
            try:
                owner = await self.dispatcher.notify_user(
                    match.id_str,
                    match.lost_item_user_id,
                    match.similarity_score,
                    match.lost_item_category,
                    NotificationAudience.OWNER,
                )
                outcome.email_sent = owner.email_sent
                outcome.push_sent = owner.push_sent

                if run.source_type == ItemType.LOST:
                    finder = await self.dispatcher.notify_user(
                        match.id_str,
                        match.found_item_user_id,
                        match.similarity_score,
                        match.lost_item_category,
                        NotificationAudience.FINDER,
                    )
                    outcome.push_sent = outcome.push_sent or finder.push_sent
            except Exception as e:
                logger.exception(f"Notifying participants of match {match.id} failed")
                outcome.error = str(e) or type(e).__name__

        return run

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search_items(
        self, query_embedding: list[float], limit: Optional[int] = None
    ) -> list[ItemSearchHit]:
        """
        Rank open items against a free-form query embedding.

        Args:
            query_embedding: Embedding of the user's description or photo
            limit: Maximum results (defaults to settings)

        Returns:
            Items scoring at least the search threshold, best first
        """
        if not query_embedding:
            return []

        candidates = await self.items.get_searchable_async()
        ranked = rank_by_similarity(
            query_embedding, candidates, lambda item: item.embedding, SEARCH_SIMILARITY_THRESHOLD
        )
        limit = limit or self.settings.search_limit

        return [
            ItemSearchHit(
                item_id=item.id_str,
                score=score,
                type=item.type,
                category=item.category,
                ai_description=item.ai_description,
                color_tags=item.color_tags,
                images=item.blurred_images if item.contains_sensitive_info else item.images,
                created_by=item.created_by,
            )
            for item, score in ranked[:limit]
        ]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load_source(self, item_id: str, expected_type: ItemType) -> Item:
        if not BaseRepository.is_valid_id(item_id):
            raise ItemNotFound(item_id)
        item = await self.items.get_by_id_async(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        if item.type != expected_type:
            raise InvalidItemType(
                f"Item {item_id} is a {item.type} item, expected {expected_type.value}",
                resource_id=item_id,
            )
        return item

    def _require_embedding(self, item: Item) -> None:
        if not item.has_embedding:
            raise EmbeddingNotReady(item.id_str)

        expected = self.settings.embedding_dimension
        if expected and len(item.embedding) != expected:
            logger.warning(
                f"Item {item.id} embedding has {len(item.embedding)} dimensions, "
                f"expected {expected}; only same-length embeddings will match"
            )

    async def _record_match(
        self, run: MatchRunResult, source: Item, candidate: Item, score: float
    ) -> None:
        """Store one match and append its outcome to the run."""
        lost, found = (source, candidate) if source.type == ItemType.LOST else (candidate, source)

        match = Match(
            lost_item_id=lost.id,
            found_item_id=found.id,
            lost_item_user_id=lost.created_by,
            found_item_user_id=found.created_by,
            lost_item_category=lost.category,
            lost_item_description=lost.ai_description,
            found_item_description=found.ai_description,
            similarity_score=score,
            status=MatchStatus.PENDING,
        )

        try:
            match, created = await self.matches.create_if_absent_async(match)
        except PyMongoError as e:
            logger.exception(f"Storing match lost={lost.id} found={found.id} failed")
            run.results.append(
                MatchOutcome(
                    match_id="",
                    lost_item_id=lost.id_str,
                    found_item_id=found.id_str,
                    lost_user_id=lost.created_by,
                    found_user_id=found.created_by,
                    score=score,
                    status="error",
                    error=str(e),
                )
            )
            return

        run.results.append(
            MatchOutcome(
                match_id=match.id_str,
                lost_item_id=lost.id_str,
                found_item_id=found.id_str,
                lost_user_id=lost.created_by,
                found_user_id=found.created_by,
                score=score,
                status="match_created" if created else "already_matched",
            )
        )
        if created:
            run.created.append(match)


# Global engine instance
_matching_engine: Optional[MatchingEngine] = None


def get_matching_engine() -> MatchingEngine:
    """Get the global matching engine instance."""
    global _matching_engine
    if _matching_engine is None:
        _matching_engine = MatchingEngine()
    return _matching_engine
