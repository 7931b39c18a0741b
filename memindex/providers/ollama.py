"""Ollama embedding provider (nomic-embed-text by default)."""

import json
import logging
import urllib.request
from typing import Optional

from memindex.core.vector_math import normalize

logger = logging.getLogger(__name__)


class OllamaEmbed:
    """
    EmbedProvider backed by a local Ollama instance.

    nomic-embed-text expects task prefixes ("search_document: ",
    "search_query: "); other models usually want none, so the prefixes are
    only applied by default for nomic models. Vectors are truncated to
    `dims` and L2-normalized before return.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        dims: Optional[int] = None,
        document_prefix: Optional[str] = None,
        query_prefix: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._dims = dims  # None = resolve from config at first call
        nomic = model.startswith("nomic-embed")
        self._document_prefix = (
            document_prefix if document_prefix is not None
            else ("search_document: " if nomic else "")
        )
        self._query_prefix = (
            query_prefix if query_prefix is not None
            else ("search_query: " if nomic else "")
        )

    @property
    def dims(self) -> int:
        if self._dims is None:
            import memindex
            self._dims = memindex.get_config().embed_dims
        return self._dims

    def _raw_embed(self, text: str) -> list[float]:
        """Call Ollama /api/embed and return the raw vector."""
        payload = json.dumps({"model": self.model, "input": text}).encode()
        req = urllib.request.Request(
            f"{self.base_url}/api/embed",
            data=payload,
            headers={"Content-Type": "application/json"},
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            data = json.loads(resp.read())
        return data["embeddings"][0]

    def _truncate_and_normalize(self, vec: list[float]) -> list[float]:
        truncated = vec[: self.dims]
        if len(truncated) < self.dims:
            logger.warning(
                "Ollama model %s returned %dd vectors, expected %d",
                self.model, len(truncated), self.dims,
            )
        return normalize(truncated)

    def embed(self, text: str) -> list[float]:
        """Embed a document/memory for storage."""
        return self._truncate_and_normalize(self._raw_embed(f"{self._document_prefix}{text}"))

    def embed_query(self, text: str) -> list[float]:
        """Embed a search query."""
        return self._truncate_and_normalize(self._raw_embed(f"{self._query_prefix}{text}"))
