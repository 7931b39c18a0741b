"""Server configuration via environment variables."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

from memindex.config import MemindexConfig


class Settings(BaseSettings):
    """memindex-server configuration. All values from env vars or .env file."""

    # Server
    host: str = "127.0.0.1"
    port: int = 18791
    log_level: str = "info"

    # Auth
    api_key: str = ""  # comma-separated accepted keys; empty = no auth required

    # Storage: empty = in-memory store (lost on restart)
    db_path: str = "memindex.db"
    embed_dims: int = 768

    # Embedding provider: "ollama", "openai" or "voyage"
    embed_provider: str = "ollama"
    embed_api_key: str = ""
    embed_model: str = "nomic-embed-text"
    embed_base_url: str = ""

    # Ranking tuning
    recency_weight: float = 1.0
    importance_weight: float = 1.0
    relevance_weight: float = 1.0
    decay_factor: float = 0.99
    max_expected_access_count: int = 100
    dense_weight: float = 0.6
    sparse_weight: float = 0.4
    rrf_k: float = 60
    mmr_lambda: float = 0.7
    duplicate_threshold: float = 0.80
    default_limit: int = 5
    max_limit: int = 100

    model_config = {"env_prefix": "MEMINDEX_", "env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def db_path_resolved(self) -> Optional[Path]:
        return Path(self.db_path).resolve() if self.db_path else None

    def to_config(self) -> MemindexConfig:
        """Build the engine config. Raises ConfigError on out-of-range values."""
        return MemindexConfig(
            db_path=self.db_path_resolved,
            embed_dims=self.embed_dims,
            embed_model=self.embed_model,
            recency_weight=self.recency_weight,
            importance_weight=self.importance_weight,
            relevance_weight=self.relevance_weight,
            decay_factor=self.decay_factor,
            max_expected_access_count=self.max_expected_access_count,
            dense_weight=self.dense_weight,
            sparse_weight=self.sparse_weight,
            rrf_k=self.rrf_k,
            mmr_lambda=self.mmr_lambda,
            duplicate_threshold=self.duplicate_threshold,
            default_limit=self.default_limit,
            max_limit=self.max_limit,
        )


# Singleton: import this everywhere instead of creating new Settings()
settings = Settings()
