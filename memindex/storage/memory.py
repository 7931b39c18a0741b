"""
In-memory MemoryStore.

Default backend when no db_path is configured, and the store used by the
test-suite. Everything lives in a dict guarded by one lock; memories are
copied on the way in and out so callers never share state with the store.
"""

import copy
import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from memindex.core.vector_math import cosine_similarity
from memindex.models import MemoryUnit, SearchFilters
from memindex.storage.bm25 import BM25Index
from memindex.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class InMemoryMemoryStore:
    """Thread-safe dict-backed store with cosine dense search and BM25 sparse search."""

    def __init__(self):
        self._lock = threading.Lock()
        self._memories: dict[str, MemoryUnit] = {}
        self._bm25 = BM25Index()

    def add(self, memory: MemoryUnit) -> MemoryUnit:
        stored = copy.deepcopy(memory)
        with self._lock:
            if stored.id in self._memories:
                raise ValueError(f"Memory {stored.id} already exists")
            self._memories[stored.id] = stored
        self._bm25.add(stored.id, stored.content)
        logger.debug("Stored memory %s for user %s", stored.id, stored.user_id)
        return copy.deepcopy(stored)

    def get(self, memory_id: str) -> Optional[MemoryUnit]:
        with self._lock:
            memory = self._memories.get(memory_id)
            return copy.deepcopy(memory) if memory else None

    def get_many(self, memory_ids: Iterable[str]) -> list[MemoryUnit]:
        with self._lock:
            return [
                copy.deepcopy(self._memories[mid])
                for mid in memory_ids
                if mid in self._memories
            ]

    def update(self, memory: MemoryUnit) -> bool:
        stored = copy.deepcopy(memory)
        with self._lock:
            previous = self._memories.get(stored.id)
            if previous is None:
                return False
            self._memories[stored.id] = stored
        if previous.content != stored.content:
            self._bm25.add(stored.id, stored.content)
        return True

    def delete(self, memory_id: str) -> bool:
        with self._lock:
            removed = self._memories.pop(memory_id, None)
        if removed is None:
            return False
        self._bm25.remove(memory_id)
        return True

    def exists(self, memory_id: str) -> bool:
        with self._lock:
            return memory_id in self._memories

    def dense_search(
        self,
        embedding: list[float],
        filters: SearchFilters,
        limit: int,
    ) -> list[tuple[str, float]]:
        if not embedding or limit <= 0:
            return []
        with self._lock:
            candidates = [
                (m.id, cosine_similarity(embedding, m.embedding))
                for m in self._memories.values()
                if m.embedding and len(m.embedding) == len(embedding) and filters.matches(m)
            ]
        candidates.sort(key=lambda pair: pair[1], reverse=True)
        return candidates[:limit]

    def sparse_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[tuple[str, float]]:
        if not query or limit <= 0:
            return []
        hits = self._bm25.search(query)
        results = []
        with self._lock:
            for memory_id, score in hits:
                memory = self._memories.get(memory_id)
                if memory is not None and filters.matches(memory):
                    results.append((memory_id, score))
                    if len(results) >= limit:
                        break
        return results

    def find_by_content_hash(self, user_id: str, content_hash: str) -> Optional[MemoryUnit]:
        with self._lock:
            for memory in self._memories.values():
                if (
                    memory.user_id == user_id
                    and memory.content_hash == content_hash
                    and not memory.is_deleted
                ):
                    return copy.deepcopy(memory)
        return None

    def list_memories(self, user_id: str, limit: Optional[int] = None) -> list[MemoryUnit]:
        with self._lock:
            active = [
                copy.deepcopy(m)
                for m in self._memories.values()
                if m.user_id == user_id and not m.is_deleted
            ]
        active.sort(key=lambda m: ensure_utc(m.created_at), reverse=True)
        return active[:limit] if limit is not None else active

    def record_access(self, memory_ids: list[str], when: Optional[datetime] = None) -> None:
        when = when or utcnow()
        with self._lock:
            for memory_id in memory_ids:
                memory = self._memories.get(memory_id)
                if memory is not None:
                    memory.access_count += 1
                    memory.last_accessed_at = when

    def count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1 for m in self._memories.values()
                if not m.is_deleted and (user_id is None or m.user_id == user_id)
            )
