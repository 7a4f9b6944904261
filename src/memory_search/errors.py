"""Error taxonomy for memory search.

Every error raised by this package derives from ``MemorySearchError`` so a
request layer can catch one base class.  The embedding branch is split by
who recovers from it: unavailable backends and backend failures both send
the search pipeline down the keyword path, while the backfill counts them
per record.
"""

from __future__ import annotations


class MemorySearchError(Exception):
    """Base class for all memory-search errors."""


class QueryValidationError(MemorySearchError, ValueError):
    """Empty query or empty text to embed. Surfaced immediately, never retried."""


class EmbeddingError(MemorySearchError):
    """Base class for anything that prevents an embedding from being produced."""


class EmbeddingUnavailableError(EmbeddingError):
    """Backend not configured, not loaded, or failed to load."""


class EmbeddingBackendError(EmbeddingError):
    """The embedding call itself failed (network, upstream, malformed response)."""


class InvalidCredentialError(EmbeddingBackendError):
    """The remote API rejected the configured credential."""


class RateLimitedError(EmbeddingBackendError):
    """The remote API refused the request because of rate limiting."""


class UpstreamServiceError(EmbeddingBackendError):
    """The remote API returned a server-side error."""


class DimensionMismatchError(MemorySearchError, ValueError):
    """Two vectors of different lengths were compared or stored together."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector length mismatch: expected {expected}, got {actual}")


class RepositoryError(MemorySearchError):
    """Storage failure. Passed through by the coordinator without retrying."""


class MemoryNotFoundError(MemorySearchError, LookupError):
    """The requested record does not exist."""

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"Memory {memory_id} not found")
