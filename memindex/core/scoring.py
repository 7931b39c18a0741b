"""
Relevance / recency / access scoring.

    score = alpha * recency + beta * importance + gamma * relevance
            + 0.1 * access_frequency

Every component is bounded to [0, 1], so the total is bounded by the sum of
the weights plus 0.1. Inputs outside their domain degrade to a neutral
value; nothing here raises.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

from memindex.config import MemindexConfig
from memindex.core.vector_math import cosine_similarity
from memindex.models import MemoryUnit, ScoredMemory
from memindex.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Weight of the access-frequency bonus in the total score
ACCESS_BONUS_SCALE = 0.1
# Used when importance is NaN/inf or relevance cannot be computed
NEUTRAL_SCORE = 0.5


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class Scorer:
    """Multi-factor memory scorer. Stateless apart from its read-only config."""

    def __init__(self, config: Optional[MemindexConfig] = None):
        self.config = config or MemindexConfig()

    def recency_score(self, memory: MemoryUnit, now: Optional[datetime] = None) -> float:
        """
        Exponential decay since the memory was last accessed (or created).

        A timestamp in the future counts as zero hours ago.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        reference = memory.last_accessed_at or memory.created_at
        hours = (now - ensure_utc(reference)).total_seconds() / 3600.0
        hours = max(0.0, hours)
        return _clamp01(self.config.decay_factor ** hours)

    def access_frequency_score(self, memory: MemoryUnit) -> float:
        """Log-scaled access count relative to max_expected_access_count."""
        max_expected = self.config.max_expected_access_count
        if max_expected <= 0:
            return 0.0
        count = max(0, memory.access_count or 0)
        return _clamp01(math.log1p(count) / math.log1p(max_expected))

    @staticmethod
    def importance_score(memory: MemoryUnit) -> float:
        value = memory.importance
        if value is None or not math.isfinite(value):
            return NEUTRAL_SCORE
        return _clamp01(value)

    @staticmethod
    def relevance_score(
        memory: MemoryUnit,
        query_embedding: Optional[Sequence[float]] = None,
    ) -> float:
        """Cosine similarity in [0, 1]; 0.5 when either embedding is missing."""
        if not query_embedding or not memory.embedding:
            return NEUTRAL_SCORE
        return cosine_similarity(query_embedding, memory.embedding)

    def score(
        self,
        memory: MemoryUnit,
        query_embedding: Optional[Sequence[float]] = None,
        now: Optional[datetime] = None,
    ) -> float:
        cfg = self.config
        return (
            cfg.recency_weight * self.recency_score(memory, now)
            + cfg.importance_weight * self.importance_score(memory)
            + cfg.relevance_weight * self.relevance_score(memory, query_embedding)
            + ACCESS_BONUS_SCALE * self.access_frequency_score(memory)
        )

    def score_many(
        self,
        memories: Iterable[MemoryUnit],
        query_embedding: Optional[Sequence[float]] = None,
        now: Optional[datetime] = None,
    ) -> list[ScoredMemory]:
        """Score each memory and return them best first (stable on ties)."""
        now = now if now is not None else utcnow()
        scored = []
        for memory in memories:
            relevance = None
            if query_embedding and memory.embedding:
                relevance = cosine_similarity(query_embedding, memory.embedding)
            scored.append(ScoredMemory(
                memory=memory,
                score=self.score(memory, query_embedding, now),
                dense_score=relevance,
            ))
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored
