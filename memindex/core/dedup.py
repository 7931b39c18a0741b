"""
Duplicate detection and merging.

Two places use it:
- Retrieval: near-duplicate results are dropped in rank order so the
  highest-ranked member of each cluster survives (partition_duplicates).
- Write path / hygiene: an incoming memory is compared with its nearest
  stored neighbours (check_duplicate), and whole stores can be scanned for
  duplicate groups and merged (find_duplicate_groups, merge_group).

Similarity is vector_math.cosine_similarity, i.e. on the [0, 1] scale.
A pair is a duplicate only when its similarity is strictly greater than the
threshold.
"""

import dataclasses
import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence, TypeVar

from memindex.core.vector_math import cosine_similarity
from memindex.models import MemoryUnit, ScoredMemory
from memindex.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DUPLICATE_THRESHOLD = 0.80
# check_duplicate action bands
NEAR_IDENTICAL_SIMILARITY = 0.95
MERGE_SIMILARITY = 0.85
# A near-identical newcomer replaces the stored text when this much longer
LONGER_CONTENT_RATIO = 1.2


class DuplicateType(str, Enum):
    NONE = "none"
    EXACT = "exact"
    SEMANTIC = "semantic"


class DuplicateAction(str, Enum):
    ADD = "add"                              # no duplicate, store it
    SKIP = "skip"                            # existing memory already covers it
    UPDATE = "update"                        # replace existing content with the richer new one
    MERGE = "merge"                          # store, linked as a merge candidate
    ADD_WITH_RELATION = "add_with_relation"  # store, linked as related


class MergeStrategy(str, Enum):
    KEEP_OLDEST = "keep_oldest"
    KEEP_NEWEST = "keep_newest"
    KEEP_MOST_ACCESSED = "keep_most_accessed"
    KEEP_HIGHEST_IMPORTANCE = "keep_highest_importance"


@dataclass
class DuplicateCheck:
    """Outcome of comparing one new item against stored neighbours."""

    is_duplicate: bool
    duplicate_type: DuplicateType = DuplicateType.NONE
    existing: Optional[MemoryUnit] = None
    similarity: float = 0.0
    action: DuplicateAction = DuplicateAction.ADD

    def to_dict(self) -> dict:
        return {
            "is_duplicate": self.is_duplicate,
            "duplicate_type": self.duplicate_type.value,
            "existing_id": self.existing.id if self.existing else None,
            "similarity": round(self.similarity, 4),
            "action": self.action.value,
        }


@dataclass
class DuplicateGroup:
    primary: MemoryUnit
    duplicates: list[MemoryUnit] = field(default_factory=list)

    @property
    def members(self) -> list[MemoryUnit]:
        return [self.primary, *self.duplicates]


def content_hash(content: str) -> str:
    """SHA-256 of normalised content: lower-cased, trimmed, LF line endings."""
    normalized = content.lower().strip().replace("\r\n", "\n").replace("\r", "\n")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def is_duplicate(
    candidate: Optional[Sequence[float]],
    pool: Sequence[Sequence[float]],
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
) -> bool:
    """True if candidate is more similar than threshold to any vector in pool."""
    if not candidate:
        return False
    return any(cosine_similarity(candidate, vec) > threshold for vec in pool)


def _scored_embedding(item: ScoredMemory) -> Optional[Sequence[float]]:
    return item.memory.embedding


def partition_duplicates(
    items: Sequence[T],
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    embedding: Callable[[T], Optional[Sequence[float]]] = _scored_embedding,
) -> tuple[list[T], list[T]]:
    """
    Split items (already in rank order) into (unique, duplicates).

    Each item is compared only with the items kept before it, so the first
    member of a near-duplicate cluster is the one that survives. Items
    without an embedding are always kept.
    """
    unique: list[T] = []
    duplicates: list[T] = []
    kept_vectors: list[Sequence[float]] = []

    for item in items:
        vec = embedding(item)
        if vec and is_duplicate(vec, kept_vectors, threshold):
            duplicates.append(item)
            continue
        unique.append(item)
        if vec:
            kept_vectors.append(vec)

    if duplicates:
        logger.debug("Dedup dropped %d of %d items", len(duplicates), len(items))
    return unique, duplicates


def _recommend_action(new_content: Optional[str], existing: MemoryUnit, similarity: float) -> DuplicateAction:
    if similarity >= NEAR_IDENTICAL_SIMILARITY:
        if new_content and len(new_content) > len(existing.content) * LONGER_CONTENT_RATIO:
            return DuplicateAction.UPDATE
        return DuplicateAction.SKIP
    if similarity >= MERGE_SIMILARITY:
        return DuplicateAction.MERGE
    return DuplicateAction.ADD_WITH_RELATION


def check_duplicate(
    embedding: Optional[Sequence[float]],
    neighbours: Sequence[MemoryUnit],
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    new_content: Optional[str] = None,
) -> DuplicateCheck:
    """
    Compare a new embedding against candidate neighbours and recommend an action.

    The most similar neighbour decides. Neighbours without an embedding are
    ignored.
    """
    if not embedding:
        return DuplicateCheck(is_duplicate=False)

    best: Optional[MemoryUnit] = None
    best_sim = 0.0
    for memory in neighbours:
        if not memory.embedding:
            continue
        sim = cosine_similarity(embedding, memory.embedding)
        if best is None or sim > best_sim:
            best, best_sim = memory, sim

    if best is None or best_sim <= threshold:
        return DuplicateCheck(is_duplicate=False, existing=best, similarity=best_sim)

    action = _recommend_action(new_content, best, best_sim)
    logger.debug(
        "Semantic duplicate of %s (similarity=%.3f, action=%s)", best.id, best_sim, action.value
    )
    return DuplicateCheck(
        is_duplicate=True,
        duplicate_type=DuplicateType.SEMANTIC,
        existing=best,
        similarity=best_sim,
        action=action,
    )


def find_duplicate_groups(
    memories: Sequence[MemoryUnit],
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
) -> list[DuplicateGroup]:
    """
    Group memories whose embeddings are near-duplicates of a seed memory.

    Seeds are taken in input order; a memory joins at most one group. Inside
    a group the primary is the oldest memory, ties going to the higher
    importance.
    """
    groups: list[DuplicateGroup] = []
    processed: set[str] = set()

    for seed in memories:
        if seed.id in processed or not seed.embedding:
            continue

        members = [seed]
        for other in memories:
            if other.id == seed.id or other.id in processed or not other.embedding:
                continue
            if cosine_similarity(seed.embedding, other.embedding) > threshold:
                members.append(other)
                processed.add(other.id)

        if len(members) > 1:
            processed.add(seed.id)
            members.sort(key=lambda m: (ensure_utc(m.created_at), -m.importance))
            groups.append(DuplicateGroup(primary=members[0], duplicates=members[1:]))

    logger.debug("Found %d duplicate groups in %d memories", len(groups), len(memories))
    return groups


def merge_group(
    group: DuplicateGroup,
    strategy: MergeStrategy = MergeStrategy.KEEP_OLDEST,
) -> MemoryUnit:
    """
    Collapse a duplicate group into a single memory value.

    The strategy picks which member survives; the survivor then carries the
    summed access count, the highest importance and the union of topics of
    the whole group. The inputs are not modified.
    """
    members = group.members
    if strategy == MergeStrategy.KEEP_NEWEST:
        keeper = max(members, key=lambda m: ensure_utc(m.created_at))
    elif strategy == MergeStrategy.KEEP_MOST_ACCESSED:
        keeper = max(members, key=lambda m: m.access_count)
    elif strategy == MergeStrategy.KEEP_HIGHEST_IMPORTANCE:
        keeper = max(members, key=lambda m: m.importance)
    else:
        keeper = group.primary

    topics: list[str] = []
    for m in members:
        for t in m.topics:
            if t not in topics:
                topics.append(t)

    return dataclasses.replace(
        keeper,
        access_count=sum(max(0, m.access_count) for m in members),
        importance=max(m.importance for m in members),
        topics=topics,
        metadata=dict(keeper.metadata),
        updated_at=utcnow(),
    )
