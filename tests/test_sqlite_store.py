"""Tests for the SQLite + sqlite-vec + FTS5 store."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("sqlite_vec")
if not hasattr(sqlite3.Connection, "enable_load_extension"):
    pytest.skip("sqlite3 built without extension loading", allow_module_level=True)

from memindex.models import MemoryType, MemoryUnit, SearchFilters  # noqa: E402
from memindex.storage.sqlite import (  # noqa: E402
    SqliteVecMemoryStore,
    _fts_query,
    _sanitize_fts_input,
    deserialize_embedding,
    serialize_embedding,
)

DIMS = 4
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _memory(content, embedding=None, **kwargs) -> MemoryUnit:
    defaults = {"user_id": "u1", "created_at": NOW, "updated_at": NOW}
    defaults.update(kwargs)
    return MemoryUnit(content=content, embedding=embedding, **defaults)


@pytest.fixture
def store(tmp_path):
    return SqliteVecMemoryStore(tmp_path / "memories.db", DIMS, "test-model-v1")


class TestHelpers:
    def test_embedding_serialization(self):
        blob = serialize_embedding([0.5, -1.0, 2.0, 0.0])
        assert len(blob) == 16
        assert deserialize_embedding(blob) == [0.5, -1.0, 2.0, 0.0]

    def test_sanitize_fts_input(self):
        assert _sanitize_fts_input('"hello" AND (world*)') == "hello world"
        assert _sanitize_fts_input("a:b -c") == "a b c"

    def test_fts_query(self):
        assert _fts_query("coffee and tea coffee") == '"coffee" OR "tea"'
        assert _fts_query("x") == ""
        assert _fts_query("") == ""
        assert _fts_query("big coffee") == '"big" OR "coffee"'


class TestCrud:
    def test_add_and_get(self, store):
        memory = _memory(
            "Alice prefers oat milk", [1.0, 0.0, 0.0, 0.0],
            memory_type=MemoryType.FACT, topics=["food"], metadata={"k": "v"},
            session_id="s1", content_hash="abc", importance=0.8,
        )
        store.add(memory)

        fetched = store.get(memory.id)
        assert fetched.content == memory.content
        assert fetched.memory_type == MemoryType.FACT
        assert fetched.topics == ["food"]
        assert fetched.metadata == {"k": "v"}
        assert fetched.session_id == "s1"
        assert fetched.importance == 0.8
        assert fetched.created_at == NOW
        assert fetched.embedding == pytest.approx([1.0, 0.0, 0.0, 0.0])
        assert store.exists(memory.id)

    def test_get_missing(self, store):
        assert store.get("mem_missing") is None
        assert store.get_many([]) == []

    def test_get_many_preserves_order(self, store):
        a = store.add(_memory("a", [1.0, 0.0, 0.0, 0.0]))
        b = store.add(_memory("b"))
        assert [m.id for m in store.get_many([b.id, "nope", a.id])] == [b.id, a.id]

    def test_wrong_dimension_rejected(self, store):
        with pytest.raises(ValueError):
            store.add(_memory("bad", [1.0, 0.0]))
        assert store.count() == 0

    def test_update(self, store):
        memory = store.add(_memory("apples are red", [1.0, 0.0, 0.0, 0.0]))
        memory.content = "bananas are yellow"
        memory.embedding = [0.0, 1.0, 0.0, 0.0]
        memory.importance = 0.9
        assert store.update(memory)

        fetched = store.get(memory.id)
        assert fetched.content == "bananas are yellow"
        assert fetched.importance == 0.9
        assert fetched.embedding == pytest.approx([0.0, 1.0, 0.0, 0.0])
        assert store.sparse_search("apples", SearchFilters(), 5) == []
        assert [i for i, _ in store.sparse_search("bananas", SearchFilters(), 5)] == [memory.id]

    def test_update_missing(self, store):
        assert not store.update(_memory("x"))

    def test_delete(self, store):
        memory = store.add(_memory("apples", [1.0, 0.0, 0.0, 0.0]))
        assert store.delete(memory.id)
        assert not store.delete(memory.id)
        assert store.get(memory.id) is None
        assert store.dense_search([1.0, 0.0, 0.0, 0.0], SearchFilters(), 5) == []
        assert store.sparse_search("apples", SearchFilters(), 5) == []


class TestSearch:
    def test_dense_search_similarity_scale(self, store):
        same = store.add(_memory("same", [1.0, 0.0, 0.0, 0.0]))
        orthogonal = store.add(_memory("orthogonal", [0.0, 1.0, 0.0, 0.0]))
        opposite = store.add(_memory("opposite", [-1.0, 0.0, 0.0, 0.0]))

        results = store.dense_search([1.0, 0.0, 0.0, 0.0], SearchFilters(), 10)
        assert [i for i, _ in results] == [same.id, orthogonal.id, opposite.id]
        scores = [s for _, s in results]
        assert scores == pytest.approx([1.0, 0.5, 0.0], abs=1e-5)

    def test_dense_search_filters_and_limit(self, store):
        mine = store.add(_memory("mine", [1.0, 0.0, 0.0, 0.0]))
        store.add(_memory("theirs", [1.0, 0.0, 0.0, 0.0], user_id="u2"))
        store.add(_memory("mine too", [0.0, 1.0, 0.0, 0.0]))

        results = store.dense_search([1.0, 0.0, 0.0, 0.0], SearchFilters(user_id="u1"), 1)
        assert [i for i, _ in results] == [mine.id]

    def test_dense_search_owner_behind_other_users(self, store):
        for _ in range(20):
            store.add(_memory("theirs", [1.0, 0.0, 0.0, 0.0], user_id="u2"))
        mine = store.add(_memory("mine", [0.95, 0.31, 0.0, 0.0]))

        results = store.dense_search([1.0, 0.0, 0.0, 0.0], SearchFilters(user_id="u1"), 3)
        assert [i for i, _ in results] == [mine.id]

    def test_dense_search_widens_past_filtered_rows(self, store):
        for _ in range(10):
            store.add(_memory("other session", [1.0, 0.0, 0.0, 0.0], session_id="s2"))
        wanted = store.add(_memory("this session", [0.6, 0.8, 0.0, 0.0], session_id="s1"))

        filters = SearchFilters(user_id="u1", session_id="s1")
        results = store.dense_search([1.0, 0.0, 0.0, 0.0], filters, 1)
        assert [i for i, _ in results] == [wanted.id]

    def test_dense_search_degenerate_queries(self, store):
        store.add(_memory("a", [1.0, 0.0, 0.0, 0.0]))
        assert store.dense_search([0.0, 0.0, 0.0, 0.0], SearchFilters(), 5) == []
        assert store.dense_search([1.0, 0.0], SearchFilters(), 5) == []
        assert store.dense_search([], SearchFilters(), 5) == []

    def test_sparse_search_any_term(self, store):
        both = store.add(_memory("coffee and croissant"))
        one = store.add(_memory("coffee only, a longer sentence about the morning"))
        store.add(_memory("tea"))
        store.add(_memory("orange juice"))
        store.add(_memory("sparkling water"))

        results = store.sparse_search("coffee croissant", SearchFilters(), 10)
        assert [i for i, _ in results] == [both.id, one.id]
        assert results[0][1] > results[1][1] > 0

    def test_sparse_search_special_characters(self, store):
        memory = store.add(_memory("deploy the api"))
        results = store.sparse_search('api" OR (deploy*', SearchFilters(), 5)
        assert [i for i, _ in results] == [memory.id]
        assert store.sparse_search('"()*', SearchFilters(), 5) == []

    def test_sparse_search_filters(self, store):
        fact = store.add(_memory("coffee fact", memory_type=MemoryType.FACT, session_id="s1"))
        store.add(_memory("coffee story", session_id="s1"))
        old = store.add(_memory("coffee history", created_at=NOW - timedelta(days=30)))

        by_type = SearchFilters(types=(MemoryType.FACT,))
        assert [i for i, _ in store.sparse_search("coffee", by_type, 10)] == [fact.id]

        by_date = SearchFilters(created_before=NOW - timedelta(days=1))
        assert [i for i, _ in store.sparse_search("coffee", by_date, 10)] == [old.id]

    def test_sparse_search_widens_past_date_filter(self, store):
        for _ in range(10):
            store.add(_memory("coffee"))
        old = store.add(_memory(
            "coffee with a long story about the old roastery downtown",
            created_at=NOW - timedelta(days=30),
        ))

        by_date = SearchFilters(created_before=NOW - timedelta(days=1))
        assert [i for i, _ in store.sparse_search("coffee", by_date, 1)] == [old.id]

    def test_soft_deleted_hidden(self, store):
        memory = store.add(_memory("coffee", [1.0, 0.0, 0.0, 0.0]))
        memory.is_deleted = True
        store.update(memory)

        assert store.dense_search([1.0, 0.0, 0.0, 0.0], SearchFilters(), 5) == []
        assert store.sparse_search("coffee", SearchFilters(), 5) == []
        assert store.count() == 0
        assert len(store.sparse_search("coffee", SearchFilters(include_deleted=True), 5)) == 1


class TestBookkeeping:
    def test_find_by_content_hash(self, store):
        memory = store.add(_memory("x", content_hash="h1"))
        assert store.find_by_content_hash("u1", "h1").id == memory.id
        assert store.find_by_content_hash("u2", "h1") is None

    def test_list_memories(self, store):
        old = store.add(_memory("old", created_at=NOW - timedelta(days=2)))
        new = store.add(_memory("new"))
        store.add(_memory("other", user_id="u2"))
        assert [m.id for m in store.list_memories("u1")] == [new.id, old.id]
        assert [m.id for m in store.list_memories("u1", limit=1)] == [new.id]

    def test_record_access(self, store):
        memory = store.add(_memory("x"))
        store.record_access([memory.id], when=NOW)
        store.record_access([memory.id], when=NOW)
        store.record_access([])

        fetched = store.get(memory.id)
        assert fetched.access_count == 2
        assert fetched.last_accessed_at == NOW

    def test_count(self, store):
        store.add(_memory("a"))
        store.add(_memory("b", user_id="u2"))
        assert store.count() == 2
        assert store.count("u2") == 1


class TestEmbedModelTracking:
    def test_meta_recorded(self, tmp_path, store):
        with store._db() as db:
            meta = {row["key"]: row["value"] for row in db.execute("SELECT key, value FROM db_meta")}
        assert meta == {"embed_dims": str(DIMS), "embed_model": "test-model-v1"}

    def test_same_model_reopens(self, tmp_path):
        path = tmp_path / "m.db"
        SqliteVecMemoryStore(path, DIMS, "model-alpha")
        SqliteVecMemoryStore(path, DIMS, "model-alpha")
        SqliteVecMemoryStore(path, DIMS)

    def test_different_model_raises(self, tmp_path):
        path = tmp_path / "m.db"
        SqliteVecMemoryStore(path, DIMS, "model-alpha")
        with pytest.raises(RuntimeError, match="Embedding model mismatch"):
            SqliteVecMemoryStore(path, DIMS, "model-beta")

    def test_different_dims_raises(self, tmp_path):
        path = tmp_path / "m.db"
        SqliteVecMemoryStore(path, DIMS, "model-alpha")
        with pytest.raises(RuntimeError, match="dimension mismatch"):
            SqliteVecMemoryStore(path, DIMS * 2, "model-alpha")

    def test_unpartitioned_vectors_migrated(self, tmp_path):
        path = tmp_path / "m.db"
        store = SqliteVecMemoryStore(path, DIMS, "model-alpha")
        mine = store.add(_memory("mine"))
        theirs = store.add(_memory("theirs", user_id="u2"))

        # Recreate the vector table without the user_id partition
        with store._db() as db:
            db.execute("DROP TABLE memory_vectors")
            db.execute(f"""
                CREATE VIRTUAL TABLE memory_vectors USING vec0(
                    id TEXT PRIMARY KEY,
                    embedding FLOAT[{DIMS}] distance_metric=cosine
                )
            """)
            db.execute("DELETE FROM schema_migrations WHERE version = 2")
            db.executemany(
                "INSERT INTO memory_vectors (id, embedding) VALUES (?, ?)",
                [
                    (theirs.id, serialize_embedding([1.0, 0.0, 0.0, 0.0])),
                    (mine.id, serialize_embedding([0.0, 1.0, 0.0, 0.0])),
                ],
            )
            db.commit()

        reopened = SqliteVecMemoryStore(path, DIMS, "model-alpha")
        with reopened._db() as db:
            sql = db.execute(
                "SELECT sql FROM sqlite_master WHERE name = 'memory_vectors'"
            ).fetchone()["sql"]
        assert "partition key" in sql.lower()

        results = reopened.dense_search([1.0, 0.0, 0.0, 0.0], SearchFilters(user_id="u1"), 1)
        assert [i for i, _ in results] == [mine.id]
        assert reopened.get(theirs.id).embedding == [1.0, 0.0, 0.0, 0.0]

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "m.db"
        memory = SqliteVecMemoryStore(path, DIMS, "model-alpha").add(
            _memory("persisted", [0.0, 0.0, 1.0, 0.0])
        )
        reopened = SqliteVecMemoryStore(path, DIMS, "model-alpha")
        assert reopened.get(memory.id).content == "persisted"
        assert reopened.dense_search([0.0, 0.0, 1.0, 0.0], SearchFilters(), 1)[0][0] == memory.id


class TableEmbedProvider:
    """Fixed vectors per text; anything unlisted lands on the last axis."""

    def __init__(self, table):
        self.table = table

    def embed(self, text: str) -> list[float]:
        return list(self.table.get(text, [0.0, 0.0, 0.0, 1.0]))

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


class TestWritePathDedup:
    @pytest.fixture
    def initialized(self, store):
        import memindex
        from memindex.config import MemindexConfig

        embed = TableEmbedProvider({
            "the cat is on the mat": [1.0, 0.0, 0.0, 0.0],
            "cat on a mat": [0.995, 0.0998749, 0.0, 0.0],
        })
        memindex.init(MemindexConfig(embed_dims=DIMS), embed=embed, store=store)
        return store

    def test_near_duplicate_found_behind_other_users(self, initialized):
        from memindex.core.store import get_memory, store_memory

        first = store_memory("cat on a mat", user_id="a")
        for i in range(20):
            store_memory("the cat is on the mat", user_id=f"other{i}")

        again = store_memory("the cat is on the mat", user_id="a")
        assert again == first
        assert initialized.count("a") == 1
        assert get_memory(first).content == "the cat is on the mat"
