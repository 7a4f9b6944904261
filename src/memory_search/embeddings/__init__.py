"""Interchangeable embedding backends: on-device (local) and hosted (remote)."""

from .base import EmbeddingMethod, EmbeddingProgress, EmbeddingProvider
from .local import LocalEmbeddingProvider
from .remote import RemoteEmbeddingProvider

__all__ = [
    "EmbeddingMethod",
    "EmbeddingProgress",
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "RemoteEmbeddingProvider",
]
