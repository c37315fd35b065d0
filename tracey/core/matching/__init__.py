"""Lost/found matching engine module."""

from .matching_engine import (
    MatchingEngine,
    MatchRunResult,
    get_matching_engine,
)
from .similarity import cosine_similarity, rank_by_similarity

__all__ = [
    "MatchingEngine",
    "MatchRunResult",
    "get_matching_engine",
    "cosine_similarity",
    "rank_by_similarity",
]
