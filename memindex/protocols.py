"""
Collaborator protocols for dependency injection.

Consumers (e.g., your AI agent) implement EmbedProvider, or pick one of the
bundled providers, and pass it to memindex.init(). Storage backends implement
MemoryStore; two are bundled (in-memory and SQLite + sqlite-vec).
The ranking core never imports embedding libraries or touches storage directly.
"""

from datetime import datetime
from typing import Iterable, Optional, Protocol, runtime_checkable

from memindex.models import MemoryUnit, SearchFilters


@runtime_checkable
class EmbedProvider(Protocol):
    """Provider for text embeddings (memory storage, search, dedup)."""

    def embed(self, text: str) -> list[float]:
        """
        Get embedding vector for a document/memory (storage, dedup).

        Args:
            text: The text to embed

        Returns:
            Embedding vector as list of floats
        """
        ...

    def embed_query(self, text: str) -> list[float]:
        """
        Get embedding vector for a search query.

        Some models use different formatting for queries vs documents.
        Default implementation falls back to embed().
        """
        return self.embed(text)


@runtime_checkable
class MemoryStore(Protocol):
    """Persistence and raw search for memory units."""

    def add(self, memory: MemoryUnit) -> MemoryUnit:
        """Persist a new memory and return it."""
        ...

    def get(self, memory_id: str) -> Optional[MemoryUnit]:
        ...

    def get_many(self, memory_ids: Iterable[str]) -> list[MemoryUnit]:
        """Fetch memories by id, preserving the order of memory_ids and skipping unknown ids."""
        ...

    def update(self, memory: MemoryUnit) -> bool:
        ...

    def delete(self, memory_id: str) -> bool:
        ...

    def exists(self, memory_id: str) -> bool:
        ...

    def dense_search(
        self,
        embedding: list[float],
        filters: SearchFilters,
        limit: int,
    ) -> list[tuple[str, float]]:
        """
        Vector similarity search.

        Returns (memory_id, similarity) pairs ordered best first. Similarity
        is on the [0, 1] scale of memindex.core.vector_math.cosine_similarity.
        """
        ...

    def sparse_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[tuple[str, float]]:
        """Full-text search. Returns (memory_id, lexical score) pairs ordered best first."""
        ...

    def find_by_content_hash(self, user_id: str, content_hash: str) -> Optional[MemoryUnit]:
        ...

    def list_memories(self, user_id: str, limit: Optional[int] = None) -> list[MemoryUnit]:
        """Active memories for a user, newest first."""
        ...

    def record_access(self, memory_ids: list[str], when: Optional[datetime] = None) -> None:
        """Increment access_count and set last_accessed_at."""
        ...

    def count(self, user_id: Optional[str] = None) -> int:
        ...
