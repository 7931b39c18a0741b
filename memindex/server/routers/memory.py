"""Memory endpoints: store, search, score, importance, get, delete, dedup."""

import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, field_validator

from memindex.core.dedup import MergeStrategy
from memindex.models import MemoryType, MemoryUnit

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_METADATA_BYTES = 10_000  # 10KB cap on serialized metadata


def _check_metadata_size(v: dict | None) -> dict | None:
    if v is not None and len(json.dumps(v, default=str)) > MAX_METADATA_BYTES:
        raise ValueError(f"metadata exceeds {MAX_METADATA_BYTES} byte limit")
    return v


# --- Request/Response models ---

class StoreRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=50000, description="The text to remember")
    user_id: str = Field(..., min_length=1, max_length=200, description="Owner of the memory")
    memory_type: MemoryType = Field(MemoryType.EPISODIC, description="episodic, semantic, procedural or fact")
    session_id: Optional[str] = Field(None, max_length=200)
    importance: Optional[float] = Field(None, ge=0.0, le=1.0, description="Omit to compute heuristically")
    topics: list[str] = Field(default_factory=list, max_length=50)
    metadata: Optional[dict] = Field(None, description="Additional structured data")
    dedup: bool = Field(True, description="Skip or link near-duplicates of stored memories")

    _validate_metadata = field_validator("metadata")(_check_metadata_size)


class StoreResponse(BaseModel):
    memory_id: str


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000, description="Search query")
    limit: Optional[int] = Field(None, description="Max results (default/max from config)")
    user_id: Optional[str] = Field(None, max_length=200)
    session_id: Optional[str] = Field(None, max_length=200)
    memory_types: Optional[list[MemoryType]] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    min_score: Optional[float] = Field(None, ge=0.0)


class ScoreRequest(BaseModel):
    memory_id: str = Field(..., max_length=100)
    query: Optional[str] = Field(None, max_length=2000, description="Query for the relevance component")


class ImportanceRequest(BaseModel):
    content: str = Field(..., max_length=50000)
    memory_type: MemoryType = MemoryType.EPISODIC


class DedupRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=200)
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    strategy: MergeStrategy = MergeStrategy.KEEP_OLDEST
    dry_run: bool = True


def _get_or_404(memory_id: str) -> MemoryUnit:
    from memindex.core.store import get_memory as _get

    memory = _get(memory_id)
    if memory is None:
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return memory


# --- Endpoints ---
# Routes use `def` (not `async def`) because they call synchronous memindex
# functions. FastAPI runs `def` routes in a threadpool, keeping the event
# loop free for other requests.

@router.post("/store", response_model=StoreResponse)
def store(req: StoreRequest):
    """Store a new memory with dedup check."""
    from memindex.core.store import store_memory

    memory_id = store_memory(
        content=req.content,
        user_id=req.user_id,
        memory_type=req.memory_type,
        session_id=req.session_id,
        importance=req.importance,
        topics=req.topics,
        metadata=req.metadata,
        dedup=req.dedup,
    )
    return StoreResponse(memory_id=memory_id)


@router.post("/search")
def search(req: SearchRequest):
    """Hybrid search: dense + sparse, fused, scored, deduplicated, diversified."""
    from memindex.core.retrieval import find_similar_memories

    results = find_similar_memories(
        query=req.query,
        limit=req.limit,
        user_id=req.user_id,
        session_id=req.session_id,
        memory_types=req.memory_types,
        created_after=req.created_after,
        created_before=req.created_before,
        min_score=req.min_score,
    )
    return {"results": results, "count": len(results)}


@router.post("/score")
def score(req: ScoreRequest):
    """Score one stored memory, optionally against a query."""
    import memindex

    memory = _get_or_404(req.memory_id)
    engine = memindex.get_engine()
    query_embedding = memindex.get_embed().embed_query(req.query) if req.query else None
    scorer = engine.scorer
    return {
        "memory_id": memory.id,
        "score": engine.score_memory(memory, query_embedding),
        "recency": scorer.recency_score(memory),
        "importance": scorer.importance_score(memory),
        "relevance": scorer.relevance_score(memory, query_embedding),
        "access_frequency": scorer.access_frequency_score(memory),
    }


@router.post("/importance")
def importance(req: ImportanceRequest):
    """Heuristic importance of arbitrary content (nothing is stored)."""
    from memindex.core.importance import analyze_importance

    return {"importance": analyze_importance(req.content, req.memory_type)}


@router.post("/dedup")
def dedup(req: DedupRequest):
    """Find and (unless dry_run) merge duplicate memories for a user."""
    from memindex.core.store import merge_duplicates

    groups = merge_duplicates(
        user_id=req.user_id,
        threshold=req.threshold,
        strategy=req.strategy,
        dry_run=req.dry_run,
    )
    return {"groups": groups, "count": len(groups), "dry_run": req.dry_run}


@router.get("/{memory_id}")
def get_memory(memory_id: str):
    """Get a specific memory by ID."""
    return _get_or_404(memory_id).to_dict()


@router.delete("/{memory_id}")
def delete(memory_id: str, hard: bool = True):
    """Delete a memory (hard by default; hard=false only flags it deleted)."""
    from memindex.core.store import delete_memory

    if not delete_memory(memory_id, hard=hard):
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return {"deleted": True, "memory_id": memory_id}
