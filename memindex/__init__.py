"""
memindex: long-term semantic memory for LLM agents.

Stores text memories, retrieves the most relevant ones for a query and ranks
them by relevance, recency, importance and diversity.

Usage:
    import memindex
    from memindex.config import MemindexConfig

    config = MemindexConfig(db_path=Path("data/memories.db"))
    memindex.init(config, embed="ollama")

    # Now use memindex.core.store, memindex.core.retrieval, etc.
"""

import logging
import math
import threading
from typing import Optional

from memindex.config import MemindexConfig
from memindex.protocols import EmbedProvider, MemoryStore

__version__ = "0.1.0"

_log = logging.getLogger(__name__)

_config: Optional[MemindexConfig] = None
_embed: Optional[EmbedProvider] = None
_store: Optional[MemoryStore] = None
_engine = None
_initialized: bool = False
_init_lock = threading.Lock()

_PROVIDER_SHORTCUTS: dict[str, type] = {}


def _get_provider_class(name: str) -> type:
    """Lazy-load provider classes to avoid import cost when not used."""
    if not _PROVIDER_SHORTCUTS:
        from memindex.providers.ollama import OllamaEmbed
        _PROVIDER_SHORTCUTS["ollama"] = OllamaEmbed
    cls = _PROVIDER_SHORTCUTS.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown embed provider shortcut {name!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_SHORTCUTS))}"
        )
    return cls


def _create_store(config: MemindexConfig) -> MemoryStore:
    if config.db_path is None:
        from memindex.storage.memory import InMemoryMemoryStore
        _log.info("No db_path configured, using in-memory store")
        return InMemoryMemoryStore()

    from memindex.storage.sqlite import SqliteVecMemoryStore
    return SqliteVecMemoryStore(config.db_path, config.embed_dims, config.embed_model)


def init(
    config: MemindexConfig,
    embed: "EmbedProvider | str",
    store: Optional[MemoryStore] = None,
    *,
    embed_model: str = "",
    embed_base_url: str = "",
) -> None:
    """
    Initialize memindex with configuration, an embedding provider and a store.

    Must be called before using the module-level functions in
    memindex.core.store and memindex.core.retrieval.

    Args:
        config: Ranking weights, limits, storage path
        embed: Provider for text embeddings, or a shortcut string (e.g. "ollama")
        store: MemoryStore to use; defaults to SQLite when config.db_path is
            set, otherwise an in-memory store
        embed_model: Override the default model when using a shortcut
        embed_base_url: Override the default base URL when using a shortcut
    """
    global _config, _embed, _store, _engine, _initialized

    # Resolve string shortcut to provider instance
    if isinstance(embed, str):
        cls = _get_provider_class(embed)
        kwargs: dict = {"dims": config.embed_dims}
        if embed_model:
            kwargs["model"] = embed_model
        if embed_base_url:
            kwargs["base_url"] = embed_base_url
        embed = cls(**kwargs)

    # Validate before publishing anything globally
    _validate_embed(embed, config)

    if store is None:
        store = _create_store(config)

    from memindex.core.retrieval import RetrievalEngine
    engine = RetrievalEngine(config, store, embed)

    with _init_lock:
        _config = config
        _embed = embed
        _store = store
        _engine = engine
        _initialized = True

    _log.info(
        "memindex initialized (store=%s, embed=%s, dims=%d)",
        type(store).__name__, type(embed).__name__, config.embed_dims,
    )


def _validate_embed(embed: EmbedProvider, config: MemindexConfig) -> None:
    """Check that the provider returns vectors matching config expectations."""
    try:
        vec = embed.embed("memindex validation")
    except Exception as exc:
        raise RuntimeError(
            f"Embedding provider failed validation call: {exc}"
        ) from exc

    if len(vec) != config.embed_dims:
        raise ValueError(
            f"Embedding dimension mismatch: provider returned {len(vec)}d "
            f"but config.embed_dims={config.embed_dims}. "
            f"Either change config.embed_dims or fix the provider."
        )

    norm = math.sqrt(sum(x * x for x in vec))
    if abs(norm - 1.0) > 0.05:
        _log.warning(
            "Embedding vector is not L2-normalized (norm=%.4f). "
            "Duplicate thresholds assume normalized vectors; dedup quality "
            "may degrade.",
            norm,
        )


def get_config() -> MemindexConfig:
    """Get the current config. Raises if not initialized."""
    if not _initialized or _config is None:
        raise RuntimeError("memindex not initialized. Call memindex.init() first.")
    return _config


def get_embed() -> EmbedProvider:
    """Get the embedding provider. Raises if not initialized."""
    if not _initialized or _embed is None:
        raise RuntimeError("memindex not initialized. Call memindex.init() first.")
    return _embed


def get_store() -> MemoryStore:
    """Get the memory store. Raises if not initialized."""
    if not _initialized or _store is None:
        raise RuntimeError("memindex not initialized. Call memindex.init() first.")
    return _store


def get_engine():
    """Get the retrieval engine. Raises if not initialized."""
    if not _initialized or _engine is None:
        raise RuntimeError("memindex not initialized. Call memindex.init() first.")
    return _engine
