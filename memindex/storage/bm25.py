"""
Okapi BM25 keyword index.

Used by the in-memory store for the sparse retrieval leg. The SQLite store
gets the same ranking function from FTS5's bm25() instead.
"""

import math
import re
import threading
from collections import Counter
from typing import Optional

_TOKEN_SPLIT_RE = re.compile(r"\W+")
MIN_TOKEN_LENGTH = 2


def tokenize(text: str) -> list[str]:
    """Lower-case, split on non-word characters, drop 1-char tokens."""
    if not text or not text.strip():
        return []
    return [t for t in _TOKEN_SPLIT_RE.split(text.lower()) if len(t) >= MIN_TOKEN_LENGTH]


class BM25Index:
    """Thread-safe BM25 index keyed by document id."""

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        self.k1 = k1
        self.b = b
        self._lock = threading.Lock()
        self._docs: dict[str, tuple[int, Counter]] = {}   # id -> (length, term freqs)
        self._postings: dict[str, set[str]] = {}          # term -> doc ids
        self._total_length = 0

    def __len__(self) -> int:
        return len(self._docs)

    def add(self, doc_id: str, content: str) -> None:
        """Index (or re-index) a document."""
        tokens = tokenize(content)
        with self._lock:
            self._remove_locked(doc_id)
            freqs = Counter(tokens)
            self._docs[doc_id] = (len(tokens), freqs)
            self._total_length += len(tokens)
            for term in freqs:
                self._postings.setdefault(term, set()).add(doc_id)

    def remove(self, doc_id: str) -> None:
        with self._lock:
            self._remove_locked(doc_id)

    def _remove_locked(self, doc_id: str) -> None:
        entry = self._docs.pop(doc_id, None)
        if entry is None:
            return
        length, freqs = entry
        self._total_length -= length
        for term in freqs:
            ids = self._postings.get(term)
            if ids is None:
                continue
            ids.discard(doc_id)
            if not ids:
                del self._postings[term]

    def _idf(self, df: int) -> float:
        n = len(self._docs)
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def search(self, query: str, limit: Optional[int] = None) -> list[tuple[str, float]]:
        """Return (doc_id, score) pairs, best first. Ties keep insertion order."""
        terms = list(dict.fromkeys(tokenize(query)))
        with self._lock:
            if not terms or not self._docs:
                return []
            avg_len = self._total_length / len(self._docs) or 1.0
            scores: dict[str, float] = {}
            for term in terms:
                ids = self._postings.get(term)
                if not ids:
                    continue
                idf = self._idf(len(ids))
                for doc_id in ids:
                    length, freqs = self._docs[doc_id]
                    tf = freqs[term]
                    denom = tf + self.k1 * (1 - self.b + self.b * length / avg_len)
                    scores[doc_id] = scores.get(doc_id, 0.0) + idf * tf * (self.k1 + 1) / denom
            order = {doc_id: i for i, doc_id in enumerate(self._docs)}

        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], order[kv[0]]))
        if limit is not None:
            ranked = ranked[:limit]
        return ranked
