"""
SQLite MemoryStore

Memories live in a plain table, their embeddings in a sqlite-vec vec0
virtual table (cosine metric) and their text in an FTS5 external-content
index kept in sync by triggers. Each operation opens its own connection, so
the store is safe to share between threads.
"""

import json
import logging
import math
import os
import re
import sqlite3
import struct
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from memindex.models import MemoryType, MemoryUnit, SearchFilters
from memindex.utils import parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)

# vec0 refuses k above this
MAX_KNN = 4096
# KNN rows fetched per requested result, to leave room for post-filtering
KNN_OVERFETCH = 4

_COLUMN_NAMES = (
    "id", "user_id", "session_id", "content", "memory_type", "importance", "created_at",
    "updated_at", "last_accessed_at", "access_count", "content_hash", "topics", "metadata",
    "is_deleted",
)
_MEMORY_COLUMNS = ", ".join(_COLUMN_NAMES)
# Same columns qualified for joins against the memories table aliased as m
_M_COLUMNS = ", ".join(f"m.{c}" for c in _COLUMN_NAMES)


def _apply_pragmas(db: sqlite3.Connection):
    """Apply standard SQLite pragmas for safety and concurrency."""
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA busy_timeout=5000")
    db.execute("PRAGMA foreign_keys=ON")


def _ensure_migration_table(db: sqlite3.Connection):
    db.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)
    db.commit()


def run_migration(db: sqlite3.Connection, version: int, description: str, migrate_fn: Callable[[sqlite3.Connection], None]):
    """
    Run a schema migration if it hasn't been applied yet.

    Runs migrate_fn and records the version in schema_migrations; rolls back
    and re-raises on failure. Already-applied versions are skipped.
    """
    existing = db.execute(
        "SELECT version FROM schema_migrations WHERE version = ?", (version,)
    ).fetchone()
    if existing:
        return

    logger.info(f"Running migration {version}: {description}")
    try:
        migrate_fn(db)
        db.execute(
            "INSERT INTO schema_migrations (version, description) VALUES (?, ?)",
            (version, description)
        )
        db.commit()
        logger.info(f"Migration {version} applied successfully")
    except Exception:
        db.rollback()
        logger.error(f"Migration {version} failed, rolled back", exc_info=True)
        raise


def serialize_embedding(embedding: list[float]) -> bytes:
    """Convert embedding to binary format for sqlite-vec."""
    from sqlite_vec import serialize_float32
    return serialize_float32(embedding)


def deserialize_embedding(blob: bytes) -> list[float]:
    """Inverse of serialize_embedding (packed little-endian float32)."""
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


_FTS5_SPECIAL_RE = re.compile(r'[\"*()^:{}+\-]')
_FTS5_OPERATOR_RE = re.compile(r'\b(NEAR|NOT|AND|OR)\b', re.IGNORECASE)


def _sanitize_fts_input(text: str) -> str:
    """Strip FTS5 special syntax from raw text for safe use in MATCH queries."""
    text = _FTS5_SPECIAL_RE.sub(' ', text)
    text = _FTS5_OPERATOR_RE.sub(' ', text)
    return ' '.join(text.split())


def _fts_query(text: str) -> str:
    """Any-term FTS5 query: each token quoted and OR-ed, BM25 does the ranking."""
    tokens = [t for t in _sanitize_fts_input(text).split() if len(t) >= 2]
    return " OR ".join(f'"{t}"' for t in dict.fromkeys(tokens))


class SqliteVecMemoryStore:
    """MemoryStore on SQLite + sqlite-vec + FTS5."""

    def __init__(self, db_path: Union[str, Path], embed_dims: int, embed_model: Optional[str] = None):
        self.db_path = Path(db_path)
        self.embed_dims = embed_dims
        self.embed_model = embed_model
        self.init_db()

    # ------------------------------------------------------------------
    # Connections and schema
    # ------------------------------------------------------------------

    def get_db(self) -> sqlite3.Connection:
        """Get database connection with sqlite-vec loaded."""
        import sqlite_vec

        db = sqlite3.connect(str(self.db_path))
        db.row_factory = sqlite3.Row
        _apply_pragmas(db)

        db.enable_load_extension(True)
        sqlite_vec.load(db)
        db.enable_load_extension(False)

        return db

    @contextmanager
    def _db(self):
        """Context manager for database connections, closed on exception too."""
        db = self.get_db()
        try:
            yield db
        finally:
            db.close()

    def init_db(self):
        """Create tables, indexes and triggers; apply pending migrations."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._db() as db:
            db.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    session_id TEXT,
                    content TEXT NOT NULL,
                    memory_type TEXT NOT NULL DEFAULT 'episodic',
                    importance REAL DEFAULT 0.5,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_accessed_at TEXT,
                    access_count INTEGER DEFAULT 0,
                    content_hash TEXT,
                    topics TEXT,
                    metadata TEXT,
                    is_deleted INTEGER DEFAULT 0
                )
            """)

            self._create_vector_table(db)

            db.execute("CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id, is_deleted)")
            db.execute("CREATE INDEX IF NOT EXISTS idx_memories_hash ON memories(user_id, content_hash)")

            db.execute("""
                CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
                    content,
                    content='memories',
                    content_rowid='rowid'
                )
            """)

            # Triggers to keep FTS in sync
            db.execute("""
                CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
                    INSERT INTO memories_fts(rowid, content) VALUES (NEW.rowid, NEW.content);
                END
            """)
            db.execute("""
                CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
                    INSERT INTO memories_fts(memories_fts, rowid, content)
                    VALUES ('delete', OLD.rowid, OLD.content);
                END
            """)
            db.execute("""
                CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE OF content ON memories BEGIN
                    INSERT INTO memories_fts(memories_fts, rowid, content)
                    VALUES ('delete', OLD.rowid, OLD.content);
                    INSERT INTO memories_fts(rowid, content) VALUES (NEW.rowid, NEW.content);
                END
            """)
            db.commit()

            _ensure_migration_table(db)
            run_migration(db, 0, "Baseline schema", lambda _db: None)

            def _create_meta(db: sqlite3.Connection):
                db.execute("""
                    CREATE TABLE IF NOT EXISTS db_meta (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)

            run_migration(db, 1, "Store metadata table (embedding model tracking)", _create_meta)
            run_migration(db, 2, "Partition memory_vectors by user_id", self._partition_vectors)
            self._check_embed_meta(db)

        # SQLite stores data in plaintext, owner read/write only
        try:
            os.chmod(self.db_path, 0o600)
        except OSError:
            logger.debug("Could not set restrictive permissions on database file")

        logger.info("SQLite memory store ready at %s (%dd)", self.db_path, self.embed_dims)

    def _create_vector_table(self, db: sqlite3.Connection):
        # user_id is a partition key so KNN scans only the owner's vectors
        db.execute(f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS memory_vectors USING vec0(
                id TEXT PRIMARY KEY,
                user_id TEXT partition key,
                embedding FLOAT[{self.embed_dims}] distance_metric=cosine
            )
        """)

    def _partition_vectors(self, db: sqlite3.Connection):
        """Rebuild a memory_vectors table created before it had the user_id partition."""
        row = db.execute(
            "SELECT sql FROM sqlite_master WHERE name = 'memory_vectors'"
        ).fetchone()
        if row is not None and "partition key" in row["sql"].lower():
            return

        vectors = db.execute("""
            SELECT v.id AS id, v.embedding AS embedding, m.user_id AS user_id
            FROM memory_vectors v
            JOIN memories m ON v.id = m.id
        """).fetchall()
        db.execute("DROP TABLE memory_vectors")
        self._create_vector_table(db)
        db.executemany(
            "INSERT INTO memory_vectors (id, user_id, embedding) VALUES (?, ?, ?)",
            [(v["id"], v["user_id"], v["embedding"]) for v in vectors],
        )
        logger.info("Re-partitioned %d vectors by user_id", len(vectors))

    def _check_embed_meta(self, db: sqlite3.Connection):
        """
        Record the embedding model and dimensions on first use; refuse to open
        a database written with a different model or dimensionality.
        """
        meta = {row["key"]: row["value"] for row in db.execute("SELECT key, value FROM db_meta")}

        stored_dims = meta.get("embed_dims")
        if stored_dims is not None and int(stored_dims) != self.embed_dims:
            raise RuntimeError(
                f"Embedding dimension mismatch: {self.db_path} holds {stored_dims}d vectors "
                f"but embed_dims={self.embed_dims}."
            )

        stored_model = meta.get("embed_model")
        if self.embed_model and stored_model and stored_model != self.embed_model:
            raise RuntimeError(
                f"Embedding model mismatch: {self.db_path} was built with {stored_model!r}, "
                f"configured model is {self.embed_model!r}. Re-embed or use a new database."
            )

        if stored_dims is None:
            db.execute(
                "INSERT INTO db_meta (key, value) VALUES ('embed_dims', ?)", (str(self.embed_dims),)
            )
        if stored_model is None and self.embed_model:
            db.execute(
                "INSERT INTO db_meta (key, value) VALUES ('embed_model', ?)", (self.embed_model,)
            )
        db.commit()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_memory(row: sqlite3.Row, embedding: Optional[list[float]] = None) -> MemoryUnit:
        try:
            memory_type = MemoryType(row["memory_type"])
        except ValueError:
            memory_type = MemoryType.EPISODIC
        return MemoryUnit(
            id=row["id"],
            user_id=row["user_id"],
            session_id=row["session_id"],
            content=row["content"],
            memory_type=memory_type,
            embedding=embedding,
            importance=row["importance"] if row["importance"] is not None else 0.5,
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
            updated_at=parse_timestamp(row["updated_at"]) or utcnow(),
            last_accessed_at=parse_timestamp(row["last_accessed_at"]),
            access_count=row["access_count"] or 0,
            content_hash=row["content_hash"],
            topics=json.loads(row["topics"]) if row["topics"] else [],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            is_deleted=bool(row["is_deleted"]),
        )

    @staticmethod
    def _memory_params(memory: MemoryUnit) -> tuple:
        return (
            memory.user_id,
            memory.session_id,
            memory.content,
            memory.memory_type.value,
            memory.importance,
            to_iso(memory.created_at),
            to_iso(memory.updated_at),
            to_iso(memory.last_accessed_at),
            memory.access_count,
            memory.content_hash,
            json.dumps(memory.topics) if memory.topics else None,
            json.dumps(memory.metadata) if memory.metadata else None,
            int(memory.is_deleted),
        )

    @staticmethod
    def _load_embedding(db: sqlite3.Connection, memory_id: str) -> Optional[list[float]]:
        row = db.execute(
            "SELECT embedding FROM memory_vectors WHERE id = ?", (memory_id,)
        ).fetchone()
        return deserialize_embedding(row["embedding"]) if row else None

    def _write_embedding(self, db: sqlite3.Connection, memory: MemoryUnit):
        db.execute("DELETE FROM memory_vectors WHERE id = ?", (memory.id,))
        if memory.embedding is None:
            return
        if len(memory.embedding) != self.embed_dims:
            raise ValueError(
                f"Embedding has {len(memory.embedding)} dimensions, store expects {self.embed_dims}"
            )
        db.execute(
            "INSERT INTO memory_vectors (id, user_id, embedding) VALUES (?, ?, ?)",
            (memory.id, memory.user_id, serialize_embedding(memory.embedding))
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add(self, memory: MemoryUnit) -> MemoryUnit:
        with self._db() as db:
            try:
                db.execute(
                    f"INSERT INTO memories ({_MEMORY_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (memory.id, *self._memory_params(memory)),
                )
                self._write_embedding(db, memory)
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.debug("Stored memory %s for user %s", memory.id, memory.user_id)
        return memory

    def get(self, memory_id: str) -> Optional[MemoryUnit]:
        with self._db() as db:
            row = db.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
            ).fetchone()
            if row is None:
                return None
            return self._row_to_memory(row, self._load_embedding(db, memory_id))

    def get_many(self, memory_ids: Iterable[str]) -> list[MemoryUnit]:
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return []
        with self._db() as db:
            placeholders = ",".join("?" * len(ids))
            rows = db.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories WHERE id IN ({placeholders})", ids
            ).fetchall()
            by_id = {
                row["id"]: self._row_to_memory(row, self._load_embedding(db, row["id"]))
                for row in rows
            }
        return [by_id[mid] for mid in ids if mid in by_id]

    def update(self, memory: MemoryUnit) -> bool:
        with self._db() as db:
            try:
                cursor = db.execute(
                    """
                    UPDATE memories SET
                        user_id = ?, session_id = ?, content = ?, memory_type = ?,
                        importance = ?, created_at = ?, updated_at = ?, last_accessed_at = ?,
                        access_count = ?, content_hash = ?, topics = ?, metadata = ?, is_deleted = ?
                    WHERE id = ?
                    """,
                    (*self._memory_params(memory), memory.id),
                )
                if cursor.rowcount == 0:
                    return False
                self._write_embedding(db, memory)
                db.commit()
            except Exception:
                db.rollback()
                raise
        return True

    def delete(self, memory_id: str) -> bool:
        with self._db() as db:
            cursor = db.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            db.execute("DELETE FROM memory_vectors WHERE id = ?", (memory_id,))
            db.commit()
            return cursor.rowcount > 0

    def exists(self, memory_id: str) -> bool:
        with self._db() as db:
            return db.execute(
                "SELECT 1 FROM memories WHERE id = ?", (memory_id,)
            ).fetchone() is not None

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def dense_search(
        self,
        embedding: list[float],
        filters: SearchFilters,
        limit: int,
    ) -> list[tuple[str, float]]:
        """
        KNN over vec0, then filter.

        The owner filter runs inside the KNN scan through the user_id
        partition. The remaining filters run on the joined rows, so the scan
        over-fetches and widens k until `limit` rows pass or the candidates
        run out.
        """
        if not embedding or limit <= 0:
            return []
        if len(embedding) != self.embed_dims:
            logger.warning(
                "Query embedding has %d dimensions, store expects %d; skipping dense search",
                len(embedding), self.embed_dims,
            )
            return []
        if not any(embedding):
            return []

        partition, params = "", []
        if filters.user_id is not None:
            partition = "AND v.user_id = ?"
            params.append(filters.user_id)

        blob = serialize_embedding(embedding)
        k = min(MAX_KNN, max(limit * KNN_OVERFETCH, limit))
        with self._db() as db:
            while True:
                rows = db.execute(f"""
                    SELECT v.id AS vid, distance, {_M_COLUMNS}
                    FROM memory_vectors v
                    JOIN memories m ON v.id = m.id
                    WHERE v.embedding MATCH ?
                    AND k = ?
                    {partition}
                    ORDER BY distance
                """, (blob, k, *params)).fetchall()

                results = []
                for row in rows:
                    distance = row["distance"]
                    if distance is None or math.isnan(distance):
                        continue
                    if not filters.matches(self._row_to_memory(row)):
                        continue
                    # cosine distance = 1 - cos; map cos onto [0, 1]
                    cos = max(-1.0, min(1.0, 1.0 - distance))
                    results.append((row["vid"], (cos + 1.0) / 2.0))
                    if len(results) >= limit:
                        return results

                if len(rows) < k:
                    return results
                if k >= MAX_KNN:
                    logger.debug("Dense search hit k=%d with %d/%d results", k, len(results), limit)
                    return results
                k = min(MAX_KNN, k * 2)

    def sparse_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[tuple[str, float]]:
        """
        FTS5 search ranked by bm25(); score is -bm25 so larger is better.

        Dates are checked on the joined rows, so the fetch doubles until
        `limit` rows pass or the matches run out.
        """
        match = _fts_query(query or "")
        if not match or limit <= 0:
            return []

        where, params = self._filter_sql(filters)
        fetch = limit * KNN_OVERFETCH
        try:
            with self._db() as db:
                while True:
                    rows = db.execute(f"""
                        SELECT {_M_COLUMNS}, bm25(memories_fts) AS bm25_score
                        FROM memories_fts f
                        JOIN memories m ON f.rowid = m.rowid
                        WHERE memories_fts MATCH ?
                        {where}
                        ORDER BY bm25(memories_fts)
                        LIMIT ?
                    """, (match, *params, fetch)).fetchall()

                    results = []
                    for row in rows:
                        if not filters.matches(self._row_to_memory(row)):
                            continue
                        results.append((row["id"], -row["bm25_score"]))
                        if len(results) >= limit:
                            return results
                    if len(rows) < fetch:
                        return results
                    fetch *= 2
        except sqlite3.OperationalError:
            logger.debug("FTS5 query failed (bad syntax?): %s", match, exc_info=True)
            return []

    @staticmethod
    def _filter_sql(filters: SearchFilters) -> tuple[str, list]:
        """SQL pre-filter for the cheap predicates; filters.matches() stays authoritative."""
        clauses, params = [], []
        if filters.user_id is not None:
            clauses.append("AND m.user_id = ?")
            params.append(filters.user_id)
        if filters.session_id is not None:
            clauses.append("AND m.session_id = ?")
            params.append(filters.session_id)
        if not filters.include_deleted:
            clauses.append("AND m.is_deleted = 0")
        if filters.types:
            clauses.append(f"AND m.memory_type IN ({','.join('?' * len(filters.types))})")
            params.extend(t.value for t in filters.types)
        return "\n".join(clauses), params

    # ------------------------------------------------------------------
    # Lookups and bookkeeping
    # ------------------------------------------------------------------

    def find_by_content_hash(self, user_id: str, content_hash: str) -> Optional[MemoryUnit]:
        with self._db() as db:
            row = db.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories "
                "WHERE user_id = ? AND content_hash = ? AND is_deleted = 0 "
                "ORDER BY created_at LIMIT 1",
                (user_id, content_hash),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_memory(row, self._load_embedding(db, row["id"]))

    def list_memories(self, user_id: str, limit: Optional[int] = None) -> list[MemoryUnit]:
        with self._db() as db:
            rows = db.execute(
                f"SELECT {_MEMORY_COLUMNS} FROM memories "
                "WHERE user_id = ? AND is_deleted = 0 ORDER BY created_at DESC LIMIT ?",
                (user_id, -1 if limit is None else limit),
            ).fetchall()
            return [self._row_to_memory(row, self._load_embedding(db, row["id"])) for row in rows]

    def record_access(self, memory_ids: list[str], when: Optional[datetime] = None) -> None:
        """Increment access_count and set last_accessed_at for retrieved memories."""
        if not memory_ids:
            return
        now = to_iso(when or utcnow())
        placeholders = ",".join("?" * len(memory_ids))
        with self._db() as db:
            db.execute(
                f"UPDATE memories SET access_count = access_count + 1, last_accessed_at = ? "
                f"WHERE id IN ({placeholders})",
                [now] + list(memory_ids)
            )
            db.commit()

    def count(self, user_id: Optional[str] = None) -> int:
        with self._db() as db:
            if user_id is None:
                row = db.execute("SELECT COUNT(*) AS n FROM memories WHERE is_deleted = 0").fetchone()
            else:
                row = db.execute(
                    "SELECT COUNT(*) AS n FROM memories WHERE user_id = ? AND is_deleted = 0",
                    (user_id,),
                ).fetchone()
            return row["n"]
