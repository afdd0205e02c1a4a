"""Vector helpers for embedding comparison."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Empty, mismatched-length, or zero-norm inputs yield 0.0 rather than an
    error.

    Args:
        vec_a: First vector.
        vec_b: Second vector.

    Returns:
        Cosine similarity score between -1.0 and 1.0.
    """
    if len(vec_a) == 0 or len(vec_b) == 0 or len(vec_a) != len(vec_b):
        return 0.0

    va = np.asarray(vec_a, dtype=np.float64)
    vb = np.asarray(vec_b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def zero_vector(dimension: int) -> list[float]:
    """Return the fallback embedding used when the embedding call fails."""
    return [0.0] * dimension


def is_zero_vector(vec: Sequence[float] | None) -> bool:
    if vec is None or len(vec) == 0:
        return True
    return not np.any(np.asarray(vec, dtype=np.float64))
