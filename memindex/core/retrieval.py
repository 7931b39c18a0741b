"""
memindex Retrieval

Hybrid retrieval: dense vector similarity and sparse full-text rank are
fused with weighted RRF, scored (recency / importance / relevance / access),
de-duplicated in rank order and diversified with MMR.

The engine itself never stores anything and never embeds text unless it is
given an EmbedProvider and asked to search by query string.
"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from memindex.config import MemindexConfig
from memindex.core.dedup import partition_duplicates
from memindex.core.diversity import select_diverse
from memindex.core.fusion import reciprocal_rank_fusion
from memindex.core.scoring import Scorer
from memindex.errors import InvalidRequestError
from memindex.models import MemoryType, ScoredMemory, SearchFilters, SearchType
from memindex.protocols import EmbedProvider, MemoryStore
from memindex.utils import utcnow

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Ranks stored memories for a query."""

    def __init__(
        self,
        config: MemindexConfig,
        store: MemoryStore,
        embed: Optional[EmbedProvider] = None,
    ):
        self.config = config
        self.store = store
        self.embed = embed
        self.scorer = Scorer(config)

    def _resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidRequestError(f"limit must be an integer (got {limit!r})")
        if limit < 1:
            raise InvalidRequestError(f"limit must be >= 1 (got {limit})")
        if limit > self.config.max_limit:
            raise InvalidRequestError(
                f"limit {limit} exceeds max_limit {self.config.max_limit}"
            )
        return limit

    def candidate_depth(self, limit: int) -> int:
        """How many candidates each search leg should return."""
        return max(limit * self.config.candidate_multiplier, self.config.min_candidates)

    def retrieve(
        self,
        query_embedding: Optional[Sequence[float]] = None,
        query_text: Optional[str] = None,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        record_access: bool = True,
    ) -> list[ScoredMemory]:
        """
        Run the full ranking pipeline.

        Args:
            query_embedding: Query vector for the dense leg (skipped when None)
            query_text: Query text for the sparse leg (skipped when None/blank)
            filters: Predicates every result must satisfy
            limit: Result count; defaults to config.default_limit
            now: Reference time for recency scoring
            record_access: Bump access_count / last_accessed_at on returned memories

        Returns:
            At most `limit` ScoredMemory, best first.

        Raises:
            InvalidRequestError: limit < 1 or limit > config.max_limit
        """
        cfg = self.config
        limit = self._resolve_limit(limit)
        filters = filters or SearchFilters()
        now = now if now is not None else utcnow()
        depth = self.candidate_depth(limit)

        # === Candidate generation ===
        dense: list[tuple[str, float]] = []
        sparse: list[tuple[str, float]] = []
        if query_embedding:
            dense = self.store.dense_search(list(query_embedding), filters, depth)
        if query_text and query_text.strip():
            sparse = self.store.sparse_search(query_text, filters, depth)

        # === Fusion ===
        fused = reciprocal_rank_fusion(
            dense, sparse,
            k=cfg.rrf_k,
            dense_weight=cfg.dense_weight,
            sparse_weight=cfg.sparse_weight,
        )
        if not fused:
            return []

        # === Scoring ===
        memories = {m.id: m for m in self.store.get_many([f.id for f in fused])}
        top_fused = fused[0].score
        dense_scores = dict(dense)
        sparse_scores = dict(sparse)
        min_score = filters.min_score if filters.min_score is not None else cfg.min_score

        scored: list[tuple[int, ScoredMemory]] = []
        for position, item in enumerate(fused):
            memory = memories.get(item.id)
            if memory is None or not filters.matches(memory):
                continue

            base = self.scorer.score(memory, query_embedding, now)
            bonus = cfg.fusion_bonus_weight * (item.score / top_fused) if top_fused > 0 else 0.0
            final = base + bonus
            if final < min_score:
                continue

            in_dense = "dense" in item.ranks
            in_sparse = "sparse" in item.ranks
            if in_dense and in_sparse:
                search_type = SearchType.HYBRID
            elif in_sparse:
                search_type = SearchType.SPARSE
            else:
                search_type = SearchType.DENSE

            scored.append((position, ScoredMemory(
                memory=memory,
                score=final,
                fusion_score=item.score,
                dense_score=dense_scores.get(item.id),
                sparse_score=sparse_scores.get(item.id),
                search_type=search_type,
            )))

        # Final score desc, ties by fused rank
        scored.sort(key=lambda pair: (-pair[1].score, pair[0]))
        ranked = [s for _, s in scored]

        # === Dedup, then diversity ===
        unique, dropped = partition_duplicates(ranked, cfg.duplicate_threshold)
        # MMR weighs relevance against [0, 1] similarity, so scale scores to [0, 1] first
        top_score = unique[0].score if unique else 0.0
        results = select_diverse(
            unique,
            limit,
            cfg.mmr_lambda,
            relevance=lambda s: s.score / top_score if top_score > 0 else 0.0,
        )

        logger.debug(
            "Retrieval: dense=%d sparse=%d fused=%d scored=%d deduped=%d returned=%d",
            len(dense), len(sparse), len(fused), len(ranked), len(dropped), len(results),
        )

        if record_access and results:
            try:
                self.store.record_access([r.memory.id for r in results], now)
            except Exception:
                logger.warning("Failed to record memory access", exc_info=True)

        return results

    def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        record_access: bool = True,
    ) -> list[ScoredMemory]:
        """Embed the query text and retrieve with both legs."""
        if self.embed is None:
            raise RuntimeError("RetrievalEngine.search needs an EmbedProvider")
        query_embedding = self.embed.embed_query(query) if query and query.strip() else None
        return self.retrieve(
            query_embedding=query_embedding,
            query_text=query,
            filters=filters,
            limit=limit,
            now=now,
            record_access=record_access,
        )

    def score_memory(
        self,
        memory,
        query_embedding: Optional[Sequence[float]] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """Score a single memory outside the retrieval pipeline."""
        return self.scorer.score(memory, query_embedding, now)


# ============================================================================
# MAIN RETRIEVAL FUNCTION
# ============================================================================

def find_similar_memories(
    query: str,
    limit: Optional[int] = None,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    memory_types: Optional[Sequence[MemoryType]] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    min_score: Optional[float] = None,
) -> list[dict]:
    """
    Find memories relevant to a query using the initialised engine.

    Returns dicts (see ScoredMemory.to_dict) best first.
    """
    import memindex

    filters = SearchFilters(
        user_id=user_id,
        session_id=session_id,
        types=tuple(MemoryType(t) for t in memory_types) if memory_types else None,
        created_after=created_after,
        created_before=created_before,
        min_score=min_score,
    )
    results = memindex.get_engine().search(query, filters=filters, limit=limit)
    return [r.to_dict() for r in results]
