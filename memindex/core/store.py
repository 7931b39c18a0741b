"""
memindex Memory Store (write path)

Memory CRUD on top of the configured MemoryStore: store with duplicate
detection, get, delete, update importance/content/metadata, and the
duplicate-merging hygiene pass. Ranking lives in retrieval.py.
"""

import dataclasses
import json
import logging
from typing import Optional

from memindex.core.dedup import (
    DuplicateAction,
    DuplicateCheck,
    DuplicateType,
    MergeStrategy,
    check_duplicate,
    content_hash,
    find_duplicate_groups,
    merge_group,
)
from memindex.core.importance import ImportanceAnalyzer
from memindex.errors import InvalidRequestError
from memindex.models import MemoryType, MemoryUnit, SearchFilters
from memindex.utils import utcnow

logger = logging.getLogger(__name__)

# Public API input limits
MAX_CONTENT_LENGTH = 50_000
MAX_METADATA_JSON_LENGTH = 10_000
# Nearest stored neighbours compared against a new memory
DEDUP_NEIGHBOURS = 3

_analyzer = ImportanceAnalyzer()


def _clamp_importance(value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.5
    if value != value:  # NaN
        return 0.5
    return max(0.0, min(1.0, value))


def _embed_document(content: str) -> list[float]:
    import memindex
    embedding = memindex.get_embed().embed(content)
    dims = memindex.get_config().embed_dims
    if len(embedding) != dims:
        raise ValueError(
            f"Embedding dimension mismatch: provider returned {len(embedding)}d "
            f"but config.embed_dims={dims}"
        )
    return embedding


def _check_metadata(metadata: Optional[dict]):
    if metadata is None:
        return
    meta_json = json.dumps(metadata)
    if len(meta_json) > MAX_METADATA_JSON_LENGTH:
        raise InvalidRequestError(
            f"Metadata JSON exceeds {MAX_METADATA_JSON_LENGTH} chars ({len(meta_json)})"
        )


def check_for_duplicate(user_id: str, content: str, embedding: list[float]) -> DuplicateCheck:
    """Exact-hash lookup first, then the nearest stored neighbours."""
    import memindex
    store = memindex.get_store()

    exact = store.find_by_content_hash(user_id, content_hash(content))
    if exact is not None:
        return DuplicateCheck(
            is_duplicate=True,
            duplicate_type=DuplicateType.EXACT,
            existing=exact,
            similarity=1.0,
            action=DuplicateAction.SKIP,
        )

    hits = store.dense_search(embedding, SearchFilters(user_id=user_id), DEDUP_NEIGHBOURS)
    neighbours = store.get_many([memory_id for memory_id, _ in hits])
    return check_duplicate(
        embedding,
        neighbours,
        memindex.get_config().duplicate_threshold,
        new_content=content,
    )


def store_memory(
    content: str,
    user_id: str,
    memory_type: MemoryType = MemoryType.EPISODIC,
    session_id: Optional[str] = None,
    importance: Optional[float] = None,
    topics: Optional[list[str]] = None,
    metadata: Optional[dict] = None,
    dedup: bool = True,
) -> str:
    """
    Store a new memory with embedding, with dedup check.

    Args:
        content: The text to remember
        user_id: Owner of the memory
        memory_type: episodic / semantic / procedural / fact
        session_id: Conversation or session the memory came from
        importance: 0.0-1.0; computed by the importance analyzer when omitted
        topics: Free-form topic tags
        metadata: Additional structured data
        dedup: Check for exact and semantic duplicates before storing

    Returns:
        Memory ID (existing ID if the memory was a duplicate)
    """
    import memindex

    if not content or not content.strip():
        raise InvalidRequestError("content must not be empty")
    if not user_id:
        raise InvalidRequestError("user_id must not be empty")
    if len(content) > MAX_CONTENT_LENGTH:
        content = content[:MAX_CONTENT_LENGTH]
    _check_metadata(metadata)
    memory_type = MemoryType(memory_type)

    if importance is None:
        importance = _analyzer.analyze(content, memory_type)
    else:
        importance = _clamp_importance(importance)

    store = memindex.get_store()
    embedding = _embed_document(content)
    meta = dict(metadata or {})

    if dedup:
        check = check_for_duplicate(user_id, content, embedding)
        if check.is_duplicate and check.existing is not None:
            existing = check.existing
            if check.action == DuplicateAction.SKIP:
                logger.info(
                    f"Dedup: skipping store, {check.duplicate_type.value} duplicate of "
                    f"{existing.id} (similarity={check.similarity:.3f})"
                )
                return existing.id
            if check.action == DuplicateAction.UPDATE:
                updated = dataclasses.replace(
                    existing,
                    content=content,
                    embedding=embedding,
                    content_hash=content_hash(content),
                    importance=max(existing.importance, importance),
                    updated_at=utcnow(),
                )
                store.update(updated)
                logger.info(f"Dedup: replaced content of {existing.id} with longer version")
                return existing.id
            meta["similar_to"] = existing.id
            meta["similarity"] = round(check.similarity, 4)
            meta["duplicate_action"] = check.action.value

    memory = MemoryUnit(
        user_id=user_id,
        content=content,
        memory_type=memory_type,
        embedding=embedding,
        importance=importance,
        topics=list(topics or []),
        session_id=session_id,
        content_hash=content_hash(content),
        metadata=meta,
    )
    store.add(memory)
    logger.debug("Stored %s (%s, importance=%.2f)", memory.id, memory_type.value, importance)
    return memory.id


def get_memory(memory_id: str) -> Optional[MemoryUnit]:
    import memindex
    return memindex.get_store().get(memory_id)


def delete_memory(memory_id: str, hard: bool = True) -> bool:
    """Delete a memory. A soft delete only flags it, hiding it from retrieval."""
    import memindex
    store = memindex.get_store()
    if hard:
        return store.delete(memory_id)

    memory = store.get(memory_id)
    if memory is None:
        return False
    return store.update(dataclasses.replace(memory, is_deleted=True, updated_at=utcnow()))


def update_importance(memory_id: str, importance: float) -> bool:
    import memindex
    store = memindex.get_store()
    memory = store.get(memory_id)
    if memory is None:
        return False
    return store.update(dataclasses.replace(
        memory, importance=_clamp_importance(importance), updated_at=utcnow()
    ))


def update_content(memory_id: str, content: str) -> bool:
    """Replace a memory's text, re-embedding it and refreshing its content hash."""
    import memindex

    if not content or not content.strip():
        raise InvalidRequestError("content must not be empty")
    content = content[:MAX_CONTENT_LENGTH]

    store = memindex.get_store()
    memory = store.get(memory_id)
    if memory is None:
        return False
    return store.update(dataclasses.replace(
        memory,
        content=content,
        embedding=_embed_document(content),
        content_hash=content_hash(content),
        updated_at=utcnow(),
    ))


def update_memory_metadata(memory_id: str, metadata_updates: dict) -> bool:
    """Update metadata for an existing memory (merge, not replace)."""
    import memindex
    store = memindex.get_store()
    memory = store.get(memory_id)
    if memory is None:
        return False

    current = dict(memory.metadata)
    current.update(metadata_updates)
    _check_metadata(current)
    return store.update(dataclasses.replace(memory, metadata=current, updated_at=utcnow()))


def merge_duplicates(
    user_id: str,
    threshold: Optional[float] = None,
    strategy: MergeStrategy = MergeStrategy.KEEP_OLDEST,
    dry_run: bool = True,
) -> list[dict]:
    """
    Find duplicate groups among a user's memories and merge each into one.

    With dry_run=True nothing is written; the planned merges are returned.

    Returns:
        One dict per group: kept id, removed ids, merged access count / importance
    """
    import memindex
    store = memindex.get_store()
    if threshold is None:
        threshold = memindex.get_config().duplicate_threshold
    strategy = MergeStrategy(strategy)

    groups = find_duplicate_groups(store.list_memories(user_id), threshold)
    report = []
    for group in groups:
        merged = merge_group(group, strategy)
        removed = [m.id for m in group.members if m.id != merged.id]
        report.append({
            "kept": merged.id,
            "removed": removed,
            "access_count": merged.access_count,
            "importance": merged.importance,
            "topics": merged.topics,
        })
        if dry_run:
            continue
        store.update(merged)
        for memory_id in removed:
            store.delete(memory_id)

    logger.info(
        f"Dedup {'(dry run) ' if dry_run else ''}for {user_id}: "
        f"{len(groups)} groups, {sum(len(r['removed']) for r in report)} memories merged"
    )
    return report
