"""
Maximal Marginal Relevance selection.

Greedy: the first pick is the most relevant candidate; each following pick
maximises  lambda * relevance - (1 - lambda) * max_sim(candidate, selected).
lambda = 1 is pure relevance order, lambda = 0 is pure novelty.
"""

from typing import Callable, Optional, Sequence, TypeVar

from memindex.core.vector_math import cosine_similarity
from memindex.models import ScoredMemory

T = TypeVar("T")

# Similarity assumed when either embedding is missing; same default the
# Scorer uses for relevance
NEUTRAL_SIMILARITY = 0.5


def _default_relevance(item: ScoredMemory) -> float:
    return item.score


def _default_embedding(item: ScoredMemory) -> Optional[Sequence[float]]:
    return item.memory.embedding


def select_diverse(
    candidates: Sequence[T],
    limit: int,
    lambda_: float = 0.7,
    relevance: Callable[[T], float] = _default_relevance,
    embedding: Callable[[T], Optional[Sequence[float]]] = _default_embedding,
) -> list[T]:
    """
    Pick up to `limit` candidates balancing relevance against redundancy.

    Ties resolve to the earlier candidate in input order. A pair where either
    side has no embedding counts as NEUTRAL_SIMILARITY, the value unrelated
    vectors get on the [0, 1] cosine scale, so a missing embedding earns no
    novelty over an unrelated one.
    """
    if limit <= 0 or not candidates:
        return []

    remaining = list(range(len(candidates)))
    rel = [relevance(c) for c in candidates]
    vecs = [embedding(c) for c in candidates]
    # max similarity of each candidate to anything selected so far
    max_sim = [0.0] * len(candidates)
    selected: list[int] = []

    while remaining and len(selected) < limit:
        if not selected:
            best = max(remaining, key=lambda i: (rel[i], -i))
        else:
            best = max(
                remaining,
                key=lambda i: (lambda_ * rel[i] - (1.0 - lambda_) * max_sim[i], -i),
            )
        selected.append(best)
        remaining.remove(best)

        for i in remaining:
            if vecs[i] and vecs[best]:
                sim = cosine_similarity(vecs[i], vecs[best])
            else:
                sim = NEUTRAL_SIMILARITY
            if sim > max_sim[i]:
                max_sim[i] = sim

    return [candidates[i] for i in selected]
