"""
Smoke test: hit every memindex-server endpoint and verify correct responses.

Uses a mock embedding provider and the in-memory store (no API keys, no
Ollama). Runs via: pytest tests/test_server_smoke.py -v
"""

import hashlib
import math
from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

DIMS = 256


# ============================================================================
# MOCK PROVIDERS
# ============================================================================

class MockEmbedProvider:
    def __init__(self, dims=DIMS):
        self.dims = dims

    def embed(self, text: str) -> list[float]:
        h = hashlib.shake_256(text.encode()).digest(self.dims)
        vec = [b / 255.0 * 2 - 1 for b in h]
        norm = math.sqrt(sum(x * x for x in vec)) or 1.0
        return [x / norm for x in vec]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope="module")
def client():
    """TestClient wired to the real FastAPI app, but with a mock provider."""
    import memindex
    from memindex.config import MemindexConfig

    config = MemindexConfig(embed_dims=DIMS)
    memindex.init(config=config, embed=MockEmbedProvider())

    # Patch _init_memindex so the app lifespan doesn't re-init with real providers
    with patch("memindex.server.main._init_memindex"):
        from memindex.server.main import app
        with TestClient(app) as tc:
            yield tc


HEADERS = {}  # settings.api_key defaults to "" (no auth)


# ============================================================================
# 1. HEALTH ENDPOINTS
# ============================================================================

class TestHealth:
    def test_health(self, client):
        """GET /v1/health: should return healthy (no auth)."""
        r = client.get("/v1/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_stats(self, client):
        """GET /v1/stats: should return stats structure."""
        r = client.get("/v1/stats", headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert "total_active" in data["memories"]
        assert data["store"] == "InMemoryMemoryStore"
        assert data["embed_dims"] == DIMS


# ============================================================================
# 2. MEMORY ENDPOINTS
# ============================================================================

class TestMemory:
    _stored_id: str = ""

    def test_store(self, client):
        """POST /v1/memory/store: store a test memory."""
        r = client.post("/v1/memory/store", json={
            "content": "The smoke test ran successfully on this machine",
            "user_id": "smoke",
            "memory_type": "episodic",
            "topics": ["testing"],
        }, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["memory_id"].startswith("mem_")
        TestMemory._stored_id = data["memory_id"]

    def test_store_exact_duplicate_returns_same_id(self, client):
        """Storing identical content again returns the existing id."""
        assert TestMemory._stored_id, "store test must run first"
        r = client.post("/v1/memory/store", json={
            "content": "The smoke test ran successfully on this machine",
            "user_id": "smoke",
        }, headers=HEADERS)
        assert r.status_code == 200
        assert r.json()["memory_id"] == TestMemory._stored_id

    def test_store_validation(self, client):
        """Out-of-range importance and unknown types are rejected by the schema."""
        r = client.post("/v1/memory/store", json={
            "content": "x", "user_id": "smoke", "importance": 2.0,
        }, headers=HEADERS)
        assert r.status_code == 422

        r = client.post("/v1/memory/store", json={
            "content": "x", "user_id": "smoke", "memory_type": "dream",
        }, headers=HEADERS)
        assert r.status_code == 422

    def test_search(self, client):
        """POST /v1/memory/search: search for stored memory."""
        r = client.post("/v1/memory/search", json={
            "query": "smoke test machine",
            "user_id": "smoke",
            "limit": 5,
        }, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["count"] >= 1
        assert data["results"][0]["id"] == TestMemory._stored_id
        assert data["results"][0]["search_type"] == "hybrid"

    def test_search_limit_above_max_is_400(self, client):
        """A limit beyond max_limit is an invalid request."""
        r = client.post("/v1/memory/search", json={"query": "smoke", "limit": 1000}, headers=HEADERS)
        assert r.status_code == 400
        assert "max_limit" in r.json()["detail"]

        r = client.post("/v1/memory/search", json={"query": "smoke", "limit": 0}, headers=HEADERS)
        assert r.status_code == 400

    def test_score(self, client):
        """POST /v1/memory/score: component breakdown for one memory."""
        r = client.post("/v1/memory/score", json={
            "memory_id": TestMemory._stored_id,
            "query": "smoke test",
        }, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        for key in ("score", "recency", "importance", "relevance", "access_frequency"):
            assert key in data
        assert 0.0 <= data["relevance"] <= 1.0

    def test_score_missing_memory(self, client):
        r = client.post("/v1/memory/score", json={"memory_id": "mem_nope"}, headers=HEADERS)
        assert r.status_code == 404

    def test_importance(self, client):
        """POST /v1/memory/importance: heuristic only, nothing stored."""
        r = client.post("/v1/memory/importance", json={"content": "urgent"}, headers=HEADERS)
        assert r.status_code == 200
        assert r.json()["importance"] == pytest.approx(0.65)

    def test_get_by_id(self, client):
        """GET /v1/memory/{id}: retrieve stored memory."""
        r = client.get(f"/v1/memory/{TestMemory._stored_id}", headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["id"] == TestMemory._stored_id
        assert "smoke test" in data["content"]
        assert data["topics"] == ["testing"]
        assert "embedding" not in data

    def test_dedup_dry_run(self, client):
        """POST /v1/memory/dedup: nothing to merge for unrelated memories."""
        r = client.post("/v1/memory/dedup", json={"user_id": "smoke"}, headers=HEADERS)
        assert r.status_code == 200
        data = r.json()
        assert data["dry_run"] is True
        assert data["count"] == 0

    def test_soft_delete(self, client):
        """DELETE /v1/memory/{id}?hard=false: flagged, still fetchable."""
        r = client.post("/v1/memory/store", json={
            "content": "Soft deleted memory for the smoke test",
            "user_id": "smoke",
        }, headers=HEADERS)
        memory_id = r.json()["memory_id"]

        r = client.delete(f"/v1/memory/{memory_id}", params={"hard": "false"}, headers=HEADERS)
        assert r.status_code == 200

        r = client.get(f"/v1/memory/{memory_id}", headers=HEADERS)
        assert r.status_code == 200
        assert r.json()["is_deleted"] is True

    def test_delete(self, client):
        """DELETE /v1/memory/{id}: hard delete."""
        r = client.post("/v1/memory/store", json={
            "content": "Temporary memory for deletion test",
            "user_id": "smoke",
        }, headers=HEADERS)
        assert r.status_code == 200
        delete_id = r.json()["memory_id"]

        r = client.delete(f"/v1/memory/{delete_id}", headers=HEADERS)
        assert r.status_code == 200
        assert r.json()["deleted"] is True

        # Verify it's gone
        r = client.get(f"/v1/memory/{delete_id}", headers=HEADERS)
        assert r.status_code == 404

    def test_get_nonexistent_returns_404(self, client):
        r = client.get("/v1/memory/mem_does_not_exist", headers=HEADERS)
        assert r.status_code == 404

    def test_delete_nonexistent_returns_404(self, client):
        r = client.delete("/v1/memory/mem_does_not_exist", headers=HEADERS)
        assert r.status_code == 404


# ============================================================================
# 3. AUTH ENFORCEMENT (verify it works when enabled)
# ============================================================================

class TestAuth:
    def test_health_no_auth(self, client):
        """Health should always be public."""
        r = client.get("/v1/health")
        assert r.status_code == 200

    def test_store_without_key_ok_in_dev_mode(self, client):
        """With no MEMINDEX_API_KEY set, auth is disabled (dev mode)."""
        r = client.post("/v1/memory/store", json={
            "content": "Auth test memory",
            "user_id": "smoke",
        })
        assert r.status_code == 200

    def test_key_enforced_when_configured(self, client):
        from memindex.server.config import settings

        with patch.object(settings, "api_key", "s3cret"):
            r = client.post("/v1/memory/importance", json={"content": "x"})
            assert r.status_code == 401

            r = client.post("/v1/memory/importance", json={"content": "x"},
                            headers={"X-Memindex-Key": "wrong"})
            assert r.status_code == 403

            r = client.post("/v1/memory/importance", json={"content": "x"},
                            headers={"X-Memindex-Key": "s3cret"})
            assert r.status_code == 200

            # health stays public
            assert client.get("/v1/health").status_code == 200

    def test_any_listed_key_accepted(self, client, caplog):
        from memindex.server.auth import accepted_keys
        from memindex.server.config import settings

        assert accepted_keys(" old , new,,") == ["old", "new"]
        assert accepted_keys("") == []

        with patch.object(settings, "api_key", "old,new"):
            for key in ("old", "new"):
                r = client.post("/v1/memory/importance", json={"content": "x"},
                                headers={"X-Memindex-Key": key})
                assert r.status_code == 200

            r = client.post("/v1/memory/importance", json={"content": "x"},
                            headers={"X-Memindex-Key": "old,new"})
            assert r.status_code == 403
        assert "unknown API key" in caplog.text
