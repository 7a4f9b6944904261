"""Cosine similarity scoring and ranking.

Linear scan over candidate vectors; collections are small enough that no
index is needed.  Vectors from the two embedding backends have different
lengths, and comparing them is a data error: ``cosine_similarity`` raises
instead of returning 0 so it cannot be confused with a genuinely
dissimilar pair.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np
from numpy.typing import NDArray

from ..errors import DimensionMismatchError
from ..models.memory import Memory
from ..models.search import ScoredResult

Vector = Sequence[float] | NDArray


def cosine_similarity(a: Vector | None, b: Vector | None) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    The two vectors are assumed to come from the same embedding backend,
    where text embeddings typically score in [0, 1]; arbitrary vectors can
    go down to -1.  A missing operand or a zero-magnitude vector scores 0.

    Raises:
        DimensionMismatchError: ``a`` and ``b`` have different lengths.
    """
    if a is None or b is None:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(len(va), len(vb))

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def l2_normalize(vector: Vector) -> NDArray[np.float64]:
    """Scale ``vector`` to unit length; a zero vector is returned unchanged."""
    v = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(v)
    if norm == 0:
        return v
    return v / norm


def round_score(score: float) -> float:
    return round(score, 2)


def batch_score(query: Vector, candidates: Iterable[Memory]) -> list[ScoredResult]:
    """Attach a rounded similarity to every candidate, keeping input order.

    Candidates without an embedding score 0 rather than being dropped;
    thresholding is the caller's choice.
    """
    return [
        ScoredResult(memory=memory, similarity=round_score(cosine_similarity(query, memory.embedding)))
        for memory in candidates
    ]


def rank(
    scored: Iterable[ScoredResult],
    threshold: float = 0.0,
    limit: int | None = None,
) -> list[ScoredResult]:
    """Drop results below ``threshold``, sort by similarity (stable) and cap at ``limit``."""
    kept = [r for r in scored if r.similarity >= threshold]
    kept.sort(key=lambda r: r.similarity, reverse=True)
    return kept if limit is None else kept[:limit]
