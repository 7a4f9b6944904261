"""
On-device embedding backend.

Runs a sentence-transformers model in-process: no credential, no network
after the first download.  The model is loaded lazily on first use.  Load
and inference are blocking, so both run in the default executor.

Initialization is single-flight: concurrent first callers all await the same
load task and observe the same outcome.  A failed load is remembered in
``load_error`` and the next call after it tries again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import numpy as np
from numpy.typing import NDArray

from ..errors import (
    DimensionMismatchError,
    EmbeddingBackendError,
    EmbeddingUnavailableError,
    MemorySearchError,
)
from ..utils.similarity import l2_normalize
from .base import EmbeddingMethod, EmbeddingProgress, EmbeddingProvider, ProgressCallback, require_text

# Import sentence transformers with fallback
try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False

logger = logging.getLogger(__name__)

if not SENTENCE_TRANSFORMERS_AVAILABLE:
    logger.warning("sentence_transformers not available. Install for local embedding support.")

DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_LOCAL_DIMENSIONS = 384

ModelLoader = Callable[[str, str | None], Any]


def load_sentence_transformer(model_name: str, device: str | None = None) -> Any:
    """Default loader: downloads on first use, cached afterwards."""
    if not SENTENCE_TRANSFORMERS_AVAILABLE:
        raise RuntimeError("sentence_transformers not installed. Install with: pip install sentence-transformers")
    return SentenceTransformer(model_name, device=device)


def _as_array(value: Any) -> NDArray[np.float64]:
    if hasattr(value, "detach"):
        value = value.detach().cpu().numpy()
    return np.asarray(value, dtype=np.float64)


def mean_pool(token_embeddings: Any, attention_mask: Any) -> NDArray[np.float64]:
    """Average token embeddings, counting only positions the attention mask keeps.

    Accepts ``(seq, hidden)`` or ``(1, seq, hidden)`` token embeddings.
    """
    tokens = _as_array(token_embeddings)
    if tokens.ndim == 3:
        tokens = tokens[0]
    mask = _as_array(attention_mask).reshape(-1)
    if mask.shape[0] != tokens.shape[0]:
        raise ValueError(f"attention mask length {mask.shape[0]} != token count {tokens.shape[0]}")

    summed = (tokens * mask[:, None]).sum(axis=0)
    return summed / max(float(mask.sum()), 1e-9)


class LocalEmbeddingProvider(EmbeddingProvider):
    """Sentence-transformers backend with lazy, single-flight model loading."""

    method = EmbeddingMethod.LOCAL

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        dimensions: int = DEFAULT_LOCAL_DIMENSIONS,
        device: str | None = None,
        loader: ModelLoader | None = None,
    ):
        self.model_name = model_name
        self.dimensions = dimensions
        self.device = device
        self._loader = loader or load_sentence_transformer

        # Guarded together by _lock
        self._model: Any = None
        self._is_loading = False
        self._load_error: str | None = None
        self._init_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    # -- status (never blocks, never starts a load) -------------------------

    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def load_error(self) -> str | None:
        return self._load_error

    def status(self) -> dict[str, Any]:
        return {"ready": self.is_ready(), "loading": self._is_loading, "error": self._load_error}

    # -- lifecycle -----------------------------------------------------------

    async def initialize(self) -> bool:
        """Load the model once; concurrent callers share the in-flight load.

        Returns:
            True if the model is loaded, False if loading failed (see ``load_error``).
        """
        if self._model is not None:
            return True

        async with self._lock:
            if self._model is None and (self._init_task is None or self._init_task.done()):
                self._is_loading = True
                self._init_task = asyncio.create_task(self._load())
            task = self._init_task

        if task is not None:
            await asyncio.shield(task)
        return self._model is not None

    def preload(self) -> asyncio.Task:
        """Start loading in the background and return the task so callers can await it or not."""
        return asyncio.ensure_future(self.initialize())

    async def _load(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info(f"Loading local embedding model: {self.model_name}")
        try:
            model = await loop.run_in_executor(None, self._loader, self.model_name, self.device)
        except Exception as e:
            logger.error(f"Failed to load local embedding model {self.model_name}: {e.__class__.__name__}: {e}")
            async with self._lock:
                self._model = None
                self._load_error = f"{e.__class__.__name__}: {e}"
                self._is_loading = False
            return

        async with self._lock:
            self._model = model
            self._load_error = None
            self._is_loading = False
        logger.info(f"Loaded local embedding model: {self.model_name}")

    # -- embedding -----------------------------------------------------------

    def _encode(self, text: str) -> list[float]:
        output: Mapping[str, Any] = self._model.encode(text, output_value=None)
        pooled = mean_pool(output["token_embeddings"], output["attention_mask"])
        return l2_normalize(pooled).tolist()

    async def embed(self, text: str) -> list[float]:
        text = require_text(text)

        if not await self.initialize():
            raise EmbeddingUnavailableError(
                f"Local embedding model failed to load: {self._load_error or 'unknown error'}"
            )

        loop = asyncio.get_running_loop()
        try:
            vector = await loop.run_in_executor(None, self._encode, text)
        except Exception as e:
            logger.error(f"Failed to generate local embedding: {e.__class__.__name__}: {e}")
            raise EmbeddingBackendError(f"Failed to generate local embedding: {e}") from e

        if len(vector) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(vector))
        return vector

    async def embed_batch(
        self,
        texts: Sequence[str],
        progress_callback: ProgressCallback | None = None,
    ) -> list[list[float] | None]:
        """Embed texts one by one; a failed item yields ``None`` instead of aborting."""
        if not texts:
            return []

        if not await self.initialize():
            raise EmbeddingUnavailableError(
                f"Local embedding model failed to load: {self._load_error or 'unknown error'}"
            )

        embeddings: list[list[float] | None] = []
        for i, text in enumerate(texts):
            try:
                embeddings.append(await self.embed(text))
            except MemorySearchError as e:
                logger.error(f"Error embedding text {i + 1}/{len(texts)}: {e}")
                embeddings.append(None)

            if progress_callback:
                progress_callback(EmbeddingProgress(processed=i + 1, total=len(texts)))

        return embeddings
