"""
Vector math primitives for similarity calculations.

Pure Python over plain float sequences. Every function is total: dimension
mismatches and zero vectors resolve to a defined value instead of raising.
"""

import math
from typing import Optional, Sequence

Vector = Sequence[float]


def dot(a: Vector, b: Vector) -> float:
    """Dot product. 0.0 on length mismatch."""
    if len(a) != len(b):
        return 0.0
    return sum(x * y for x, y in zip(a, b))


def norm(a: Vector) -> float:
    """L2 norm."""
    return math.sqrt(sum(x * x for x in a))


def _cosine(a: Optional[Vector], b: Optional[Vector]) -> Optional[float]:
    """Native cosine in [-1, 1], or None when it is undefined for these inputs."""
    if not a or not b or len(a) != len(b):
        return None

    # dot, |a|^2 and |b|^2 in a single pass
    d = na = nb = 0.0
    for x, y in zip(a, b):
        d += x * y
        na += x * x
        nb += y * y

    if na == 0.0 or nb == 0.0:
        return None

    cos = d / math.sqrt(na * nb)
    if math.isnan(cos):
        return None
    return max(-1.0, min(1.0, cos))


def raw_cosine(a: Optional[Vector], b: Optional[Vector]) -> float:
    """
    Native cosine similarity in [-1, 1].

    Returns 0.0 when either vector is missing or empty, lengths differ, or
    either norm is zero.
    """
    cos = _cosine(a, b)
    return 0.0 if cos is None else cos


def cosine_similarity(a: Optional[Vector], b: Optional[Vector]) -> float:
    """
    Cosine similarity mapped into [0, 1]: (cos + 1) / 2.

    The mapping lets similarity compose additively with other [0, 1] scores.
    Degenerate inputs (missing, mismatched length, zero norm) return 0.0.
    """
    cos = _cosine(a, b)
    if cos is None:
        return 0.0
    return (cos + 1.0) / 2.0


def normalize(a: Vector) -> list[float]:
    """Unit-length copy of a. A zero vector is returned unchanged."""
    n = norm(a)
    if n == 0:
        return list(a)
    return [x / n for x in a]


def euclidean_distance(a: Vector, b: Vector) -> float:
    """L2 distance. inf on length mismatch."""
    if len(a) != len(b):
        return math.inf
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))
