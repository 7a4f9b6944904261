"""
Repository interface consumed by the search core.

The coordinator only talks to storage through ``MemoryRepository``; the
storage engine and its query language are someone else's concern.  Filters
are expressed as a ``MemoryFilter`` value so every backend applies the same
semantics:

* ``date_range``: inclusive bounds on ``created_at``
* ``domain``: case-insensitive substring of ``url``
* ``tags``: record has at least one of the tags
* ``has_embedding``: True/False restricts on presence of a stored vector
* ``text_query``: lexical relevance search over title, text and context
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ..models.memory import Memory
from ..models.search import DateFilter
from ..models.validators import EmbeddingModelTag


class MemoryFilter(BaseModel):
    """Conjunction of optional constraints on stored memories."""

    model_config = ConfigDict(frozen=True)

    date_range: DateFilter | None = None
    domain: str | None = None
    tags: list[str] = Field(default_factory=list)
    has_embedding: bool | None = None
    embedding_model: EmbeddingModelTag | None = None
    exclude_id: str | None = None
    text_query: str | None = None
    limit: int | None = Field(default=None, ge=1)

    def matches(self, memory: Memory) -> bool:
        """Evaluate every constraint except ``text_query`` and ``limit`` against one record."""
        if self.date_range is not None and not self.date_range.contains(memory.created_at):
            return False
        if self.domain and self.domain.lower() not in memory.url.lower():
            return False
        if self.tags and not set(self.tags) & set(memory.tags):
            return False
        if self.has_embedding is not None and memory.has_embedding != self.has_embedding:
            return False
        if self.embedding_model is not None and memory.embedding_model != self.embedding_model:
            return False
        if self.exclude_id is not None and memory.id == self.exclude_id:
            return False
        return True


class MemoryRepository(ABC):
    """Abstract base class for memory storage backends."""

    @abstractmethod
    async def find_all(self, memory_filter: MemoryFilter | None = None) -> list[Memory]:
        """Return records matching the filter, oldest first (``created_at`` ascending)."""

    @abstractmethod
    async def search_text(self, memory_filter: MemoryFilter) -> list[tuple[Memory, float]]:
        """Lexical search for ``memory_filter.text_query`` under the other filter constraints.

        Returns:
            ``(memory, relevance)`` pairs, most relevant first.  Relevance is the
            engine's native score, expected to fall roughly within 0..10.
        """

    @abstractmethod
    async def find_by_id(self, memory_id: str) -> Memory | None:
        """Return one record, or None if it does not exist."""

    @abstractmethod
    async def update_embedding(
        self,
        memory_id: str,
        vector: list[float],
        model_tag: EmbeddingModelTag,
        timestamp: datetime,
    ) -> None:
        """Persist a record's embedding. Each call commits independently."""

    @abstractmethod
    async def count(self, memory_filter: MemoryFilter | None = None) -> int:
        """Number of records matching the filter."""

    async def add(self, memory: Memory) -> Memory:
        """Insert a record. Optional for read-only backends."""
        raise NotImplementedError(f"{type(self).__name__} does not support inserts")

    async def close(self) -> None:
        """Release resources. Default is a no-op."""
        return None
