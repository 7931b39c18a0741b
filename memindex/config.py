"""
memindex configuration.

All ranking weights, limits and thresholds are set here.
No hardcoded tuning values in the rest of the package.

A config is validated once, when it is constructed, and is never mutated
afterwards. Components receive it through their constructors.
"""

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from memindex.errors import ConfigError


@dataclass(frozen=True)
class MemindexConfig:
    """Configuration for the memindex ranking and retrieval engine."""

    # Storage (None = in-memory store)
    db_path: Optional[Path] = None

    # Embedding
    embed_dims: int = 768
    embed_model: str = "nomic-embed-text"  # recorded in DB to prevent model mismatch

    # Scoring: alpha * recency + beta * importance + gamma * relevance
    recency_weight: float = 1.0
    importance_weight: float = 1.0
    relevance_weight: float = 1.0
    # decay_factor ^ hours_since_access; 0.99 ~ 3 day half-life
    decay_factor: float = 0.99
    max_expected_access_count: int = 100

    # Hybrid search
    dense_weight: float = 0.6
    sparse_weight: float = 0.4
    rrf_k: float = 60
    mmr_lambda: float = 0.7
    duplicate_threshold: float = 0.80
    fusion_bonus_weight: float = 0.1
    min_score: float = 0.0

    # Limits
    default_limit: int = 5
    max_limit: int = 100
    candidate_multiplier: int = 3
    min_candidates: int = 25

    def __post_init__(self):
        problems = self._problems()
        if problems:
            raise ConfigError(problems)

    def _problems(self) -> list[str]:
        problems = []

        for name in (
            "recency_weight",
            "importance_weight",
            "relevance_weight",
            "dense_weight",
            "sparse_weight",
            "fusion_bonus_weight",
            "min_score",
        ):
            value = getattr(self, name)
            if not _is_number(value) or value < 0:
                problems.append(f"{name} must be a non-negative number (got {value!r})")

        if not _is_number(self.decay_factor) or not 0 < self.decay_factor <= 1:
            problems.append(f"decay_factor must be in (0, 1] (got {self.decay_factor!r})")

        if not _is_number(self.rrf_k) or self.rrf_k <= 0:
            problems.append(f"rrf_k must be > 0 (got {self.rrf_k!r})")

        if not _is_number(self.mmr_lambda) or not 0 <= self.mmr_lambda <= 1:
            problems.append(f"mmr_lambda must be in [0, 1] (got {self.mmr_lambda!r})")

        if not _is_number(self.duplicate_threshold) or not 0 <= self.duplicate_threshold <= 1:
            problems.append(
                f"duplicate_threshold must be in [0, 1] (got {self.duplicate_threshold!r})"
            )

        for name in ("embed_dims", "default_limit", "max_limit", "candidate_multiplier", "min_candidates"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                problems.append(f"{name} must be an integer >= 1 (got {value!r})")

        mac = self.max_expected_access_count
        if not isinstance(mac, int) or isinstance(mac, bool) or mac < 0:
            problems.append(f"max_expected_access_count must be an integer >= 0 (got {mac!r})")

        if (
            isinstance(self.default_limit, int)
            and isinstance(self.max_limit, int)
            and self.default_limit > self.max_limit
        ):
            problems.append(
                f"default_limit ({self.default_limit}) must not exceed max_limit ({self.max_limit})"
            )

        return problems


def _is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
