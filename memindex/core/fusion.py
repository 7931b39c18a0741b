"""
Reciprocal Rank Fusion.

Merges ranked lists from independent retrieval signals (dense vectors,
full-text) without normalising their raw scores, which live on different
scales. Each list contributes weight / (k + rank) for every item it holds,
with rank 1-based.
"""

import logging
from typing import Mapping, Optional, Sequence

from memindex.models import FusedItem

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60

# (item_id, raw_score), best first
RankedList = Sequence[tuple[str, float]]


def fuse_ranked_lists(
    lists: Mapping[str, RankedList],
    weights: Optional[Mapping[str, float]] = None,
    k: float = DEFAULT_RRF_K,
) -> list[FusedItem]:
    """
    Merge any number of named ranked lists.

    Ordering: fused score descending, then best rank in any list ascending,
    then the order in which the item was first seen (lists in mapping order).
    An id that appears more than once in the same list keeps its first
    position.
    """
    weights = weights or {}
    fused: dict[str, FusedItem] = {}

    for source, ranked in lists.items():
        weight = weights.get(source, 1.0)
        seen: set[str] = set()
        for rank, (item_id, _score) in enumerate(ranked, start=1):
            if item_id in seen:
                continue
            seen.add(item_id)

            item = fused.get(item_id)
            if item is None:
                item = FusedItem(id=item_id, score=0.0, best_rank=rank)
                fused[item_id] = item
            item.score += weight / (k + rank)
            item.ranks[source] = rank
            item.best_rank = min(item.best_rank, rank)

    # dict preserves first-seen order, so a stable sort handles the last tiebreak
    result = sorted(fused.values(), key=lambda it: (-it.score, it.best_rank))
    logger.debug(
        "RRF fused %d lists (%s) into %d items",
        len(lists), ", ".join(f"{s}={len(r)}" for s, r in lists.items()), len(result),
    )
    return result


def reciprocal_rank_fusion(
    dense: RankedList,
    sparse: RankedList,
    k: float = DEFAULT_RRF_K,
    dense_weight: float = 1.0,
    sparse_weight: float = 1.0,
) -> list[FusedItem]:
    """Fuse a dense (vector) ranking with a sparse (full-text) ranking."""
    if not dense and not sparse:
        return []
    return fuse_ranked_lists(
        {"dense": dense, "sparse": sparse},
        weights={"dense": dense_weight, "sparse": sparse_weight},
        k=k,
    )
