"""Search-layer models.

Typed Pydantic models for what the parser produces and what the
coordinator returns, so callers get attribute access instead of
``result.get("key", default)`` roulette.
"""

from __future__ import annotations

from datetime import datetime
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .memory import Memory
from .validators import ContentType, EmbeddingMethod, NonNegativeInt, SearchType

# ---------------------------------------------------------------------------
# Parsed query
# ---------------------------------------------------------------------------


class DateFilter(BaseModel):
    """Inclusive ``[start, end]`` window on ``Memory.created_at``."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> Self:
        if self.start > self.end:
            raise ValueError(f"DateFilter start ({self.start}) must be <= end ({self.end})")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class ParsedQuery(BaseModel):
    """Structured filters and residual search terms extracted from a free-text query."""

    model_config = ConfigDict(frozen=True)

    semantic_terms: str = ""
    date_filter: DateFilter | None = None
    type: ContentType | None = None
    domain: str | None = None
    tags: list[str] = Field(default_factory=list)
    original_query: str = ""

    @property
    def search_text(self) -> str:
        """Text handed to lexical search: the cleaned terms, else the raw query."""
        return self.semantic_terms or self.original_query


# ---------------------------------------------------------------------------
# Ranked results
# ---------------------------------------------------------------------------


class ScoredResult(BaseModel):
    """A memory plus the scores that placed it in the ranking."""

    memory: Memory
    similarity: float = 0.0
    vector_score: float | None = None
    keyword_score: float | None = None
    combined_score: float | None = None

    @property
    def id(self) -> str:
        return self.memory.id


class SearchResponse(BaseModel):
    search_type: SearchType
    embedding_method: EmbeddingMethod
    parsed_query: ParsedQuery
    results: list[ScoredResult] = Field(default_factory=list)
    fallback_reason: str | None = None

    @property
    def count(self) -> int:
        return len(self.results)


# ---------------------------------------------------------------------------
# Batch and status reports
# ---------------------------------------------------------------------------


class BackfillReport(BaseModel):
    method: EmbeddingMethod
    processed: NonNegativeInt = 0
    failed: NonNegativeInt = 0
    total: NonNegativeInt = 0
    message: str = ""


class EmbeddingStats(BaseModel):
    total_memories: NonNegativeInt
    memories_with_embeddings: NonNegativeInt
    memories_without_embeddings: NonNegativeInt
    remote_embeddings: NonNegativeInt
    local_embeddings: NonNegativeInt
    coverage: int = Field(ge=0, le=100)


class ProviderStatus(BaseModel):
    remote_configured: bool
    local_ready: bool
    local_loading: bool = False
    local_error: str | None = None
