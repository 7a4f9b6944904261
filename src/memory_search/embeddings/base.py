"""Embedding provider abstraction.

Both backends expose the same lifecycle: a readiness check that never
blocks, a single-text ``embed`` and a progress-reporting ``embed_batch``.
Which backend a request uses is decided by the coordinator, not here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..errors import QueryValidationError
from ..models.validators import EmbeddingMethod


@dataclass(frozen=True)
class EmbeddingProgress:
    """Partial progress of a batch run."""

    processed: int
    total: int

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.processed / self.total * 100)


ProgressCallback = Callable[[EmbeddingProgress], None]


def require_text(text: str | None) -> str:
    """Return ``text`` stripped, or raise if there is nothing to embed."""
    if text is None or not text.strip():
        raise QueryValidationError("Text is required to generate an embedding")
    return text.strip()


class EmbeddingProvider(ABC):
    """Interface implemented by every embedding backend."""

    method: EmbeddingMethod
    dimensions: int

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether ``embed`` can be attempted right now. Must not block or start work."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises:
            QueryValidationError: ``text`` is empty or whitespace.
            EmbeddingUnavailableError: backend not configured or not loaded.
            EmbeddingBackendError: the backend call failed.
        """

    @abstractmethod
    async def embed_batch(
        self,
        texts: Sequence[str],
        progress_callback: ProgressCallback | None = None,
    ) -> list[list[float] | None]:
        """Embed several texts, reporting progress as they complete."""

    def status(self) -> dict[str, Any]:
        """Snapshot for status endpoints and logs."""
        return {"ready": self.is_ready()}

    @property
    def model_tag(self) -> str:
        """Tag persisted next to vectors this backend produced."""
        return self.method.value
