"""Health and stats endpoints."""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends

from memindex.server.auth import require_auth

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    """Health check: store reachable."""
    import memindex

    try:
        memindex.get_store().count()
        return {"status": "healthy"}
    except Exception:
        logger.exception("Health check failed")
        return {"status": "unhealthy"}


@router.get("/stats", dependencies=[Depends(require_auth)])
def stats(user_id: Optional[str] = None):
    """Memory counts and a retrieval latency check."""
    import memindex

    store = memindex.get_store()
    config = memindex.get_config()
    total = store.count(user_id)

    # Retrieval latency check (only if we have memories)
    latency_ms = None
    if total > 0:
        start = time.perf_counter()
        memindex.get_engine().search("test query", limit=min(3, config.max_limit), record_access=False)
        latency_ms = round((time.perf_counter() - start) * 1000, 1)

    return {
        "memories": {"total_active": total, "user_id": user_id},
        "store": type(store).__name__,
        "embed_dims": config.embed_dims,
        "retrieval_latency_ms": latency_ms,
    }
