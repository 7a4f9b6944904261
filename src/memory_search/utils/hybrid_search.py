"""
Hybrid search utilities: weighted fusion of vector and keyword rankings.

Vector hits carry a cosine similarity in [0, 1].  Keyword hits carry the
lexical engine's native relevance, which is assumed to range roughly 0-10,
so it is divided by ``keyword_score_scale`` before weighting.  A record
present in both lists gets the sum of both weighted terms.
"""

from __future__ import annotations

from collections.abc import Sequence

from ..models.search import ScoredResult

DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_KEYWORD_WEIGHT = 0.3
DEFAULT_KEYWORD_SCORE_SCALE = 10.0


def normalize_keyword_score(score: float | None, scale: float = DEFAULT_KEYWORD_SCORE_SCALE) -> float:
    """Map a native lexical relevance score onto roughly [0, 1]."""
    if not score:
        return 0.0
    return score / scale


def combine_results_weighted(
    vector_results: Sequence[ScoredResult],
    keyword_results: Sequence[ScoredResult],
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    keyword_weight: float = DEFAULT_KEYWORD_WEIGHT,
    keyword_score_scale: float = DEFAULT_KEYWORD_SCORE_SCALE,
    limit: int | None = None,
) -> list[ScoredResult]:
    """
    Fuse vector and keyword results keyed by record id.

    Args:
        vector_results: Ranked vector hits (``similarity`` set)
        keyword_results: Ranked keyword hits (``keyword_score`` holds the raw lexical score)
        vector_weight: Weight applied to the vector similarity
        keyword_weight: Weight applied to the normalised keyword score
        keyword_score_scale: Divisor normalising the raw keyword score
        limit: Maximum results to return

    Returns:
        Results with ``vector_score``, ``keyword_score`` (normalised) and
        ``combined_score`` set, sorted by ``combined_score`` descending.
    """
    combined: dict[str, ScoredResult] = {}

    for result in vector_results:
        combined[result.id] = result.model_copy(
            update={
                "vector_score": result.similarity,
                "keyword_score": 0.0,
                "combined_score": result.similarity * vector_weight,
            }
        )

    for result in keyword_results:
        normalized = normalize_keyword_score(result.keyword_score, keyword_score_scale)
        existing = combined.get(result.id)
        if existing is not None:
            combined[result.id] = existing.model_copy(
                update={
                    "keyword_score": normalized,
                    "combined_score": existing.vector_score * vector_weight + normalized * keyword_weight,
                }
            )
        else:
            combined[result.id] = result.model_copy(
                update={
                    "similarity": 0.0,
                    "vector_score": 0.0,
                    "keyword_score": normalized,
                    "combined_score": normalized * keyword_weight,
                }
            )

    fused = sorted(combined.values(), key=lambda r: r.combined_score, reverse=True)
    return fused if limit is None else fused[:limit]
