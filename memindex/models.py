"""Data model shared by the ranking core, stores and the HTTP layer."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from memindex.utils import ensure_utc, to_iso, utcnow


class MemoryType(str, Enum):
    """Cognitive memory classification."""

    EPISODIC = "episodic"      # events with temporal context
    SEMANTIC = "semantic"      # general knowledge
    PROCEDURAL = "procedural"  # how to do things
    FACT = "fact"              # specific verifiable facts


class SearchType(str, Enum):
    """Which retrieval signal surfaced a result."""

    HYBRID = "hybrid"
    DENSE = "dense"
    SPARSE = "sparse"


def new_memory_id() -> str:
    return f"mem_{uuid.uuid4().hex[:12]}"


@dataclass
class MemoryUnit:
    """
    A single stored memory.

    Content is immutable once stored; importance, access count and
    timestamps are metadata that the storage layer may update. The ranking
    core only ever reads a MemoryUnit.
    """

    user_id: str
    content: str
    memory_type: MemoryType = MemoryType.EPISODIC
    embedding: Optional[list[float]] = None
    importance: float = 0.5
    id: str = field(default_factory=new_memory_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = None
    access_count: int = 0
    topics: list[str] = field(default_factory=list)
    session_id: Optional[str] = None
    content_hash: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    is_deleted: bool = False

    def to_dict(self, include_embedding: bool = False) -> dict:
        d = {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "memory_type": self.memory_type.value,
            "importance": self.importance,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "last_accessed_at": to_iso(self.last_accessed_at),
            "access_count": self.access_count,
            "topics": list(self.topics),
            "session_id": self.session_id,
            "content_hash": self.content_hash,
            "metadata": dict(self.metadata),
            "is_deleted": self.is_deleted,
        }
        if include_embedding:
            d["embedding"] = list(self.embedding) if self.embedding is not None else None
        return d


@dataclass
class ScoredMemory:
    """A (memory, score) pair. Ephemeral: produced per request, never persisted."""

    memory: MemoryUnit
    score: float
    fusion_score: float = 0.0
    dense_score: Optional[float] = None
    sparse_score: Optional[float] = None
    search_type: SearchType = SearchType.DENSE

    def to_dict(self) -> dict:
        d = self.memory.to_dict()
        d["score"] = round(self.score, 6)
        d["search_type"] = self.search_type.value
        if self.dense_score is not None:
            d["relevance"] = round(self.dense_score, 4)
        return d


@dataclass
class FusedItem:
    """One entry of a fused ranking."""

    id: str
    score: float
    ranks: dict[str, int] = field(default_factory=dict)  # source name -> 1-based rank
    best_rank: int = 0


@dataclass(frozen=True)
class SearchFilters:
    """Filter predicates for a retrieval request."""

    user_id: Optional[str] = None
    session_id: Optional[str] = None
    types: Optional[tuple[MemoryType, ...]] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    include_deleted: bool = False
    min_score: Optional[float] = None

    def matches(self, memory: MemoryUnit) -> bool:
        if self.user_id is not None and memory.user_id != self.user_id:
            return False
        if self.session_id is not None and memory.session_id != self.session_id:
            return False
        if self.types and memory.memory_type not in self.types:
            return False
        created = ensure_utc(memory.created_at)
        if self.created_after is not None and created < ensure_utc(self.created_after):
            return False
        if self.created_before is not None and created > ensure_utc(self.created_before):
            return False
        if not self.include_deleted and memory.is_deleted:
            return False
        return True
