"""
Vector similarity for item embeddings.

Embeddings come from the external AI collaborator as plain float lists of a
fixed dimension (768 for the current model). Everything here is pure.
"""

from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

import numpy as np

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two embedding vectors.

    Mismatched lengths, empty vectors and zero-magnitude vectors all score
    0.0 rather than raising.

    Args:
        a: First embedding vector.
        b: Second embedding vector.

    Returns:
        Similarity in [-1, 1]; in practice [0, 1] for the embeddings we store.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    mag_a = np.linalg.norm(vec_a)
    mag_b = np.linalg.norm(vec_b)
    if mag_a == 0 or mag_b == 0:
        return 0.0

    sim = float(np.dot(vec_a, vec_b) / (mag_a * mag_b))
    # Clip to valid range (numerical precision issues)
    return float(np.clip(sim, -1.0, 1.0))


def rank_by_similarity(
    query: Sequence[float],
    candidates: Iterable[T],
    embedding_of: Callable[[T], Sequence[float]],
    threshold: float,
) -> list[tuple[T, float]]:
    """
    Score candidates against a query and keep those at or above threshold.

    Args:
        query: The embedding to compare against.
        candidates: Objects carrying an embedding.
        embedding_of: Extracts the embedding from a candidate.
        threshold: Inclusive minimum score.

    Returns:
        (candidate, score) pairs, highest score first.
    """
    scored = []
    for candidate in candidates:
        score = cosine_similarity(query, embedding_of(candidate))
        if score >= threshold:
            scored.append((candidate, score))
    return sorted(scored, key=lambda pair: pair[1], reverse=True)
