"""
Unit tests for the on-device embedding backend.

No real model is loaded: the provider takes a loader callable, and the fake
model mimics ``SentenceTransformer.encode(..., output_value=None)``.
"""

import asyncio
import threading
import time

import numpy as np
import pytest

from memory_search.embeddings.base import EmbeddingProgress
from memory_search.embeddings.local import LocalEmbeddingProvider, mean_pool
from memory_search.errors import (
    DimensionMismatchError,
    EmbeddingBackendError,
    EmbeddingUnavailableError,
    QueryValidationError,
)
from memory_search.models.validators import EmbeddingMethod


class FakeModel:
    """Returns two identical (3, 4) tokens plus one padding token."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    def encode(self, text, output_value=None):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("CUDA out of memory")
        return {
            "token_embeddings": np.array([[3.0, 4.0], [3.0, 4.0], [50.0, 50.0]]),
            "attention_mask": np.array([1, 1, 0]),
        }


class CountingLoader:
    """Loader that records calls, optionally failing the first ``failures`` attempts."""

    def __init__(self, model=None, failures: int = 0, delay: float = 0.0):
        self.model = model or FakeModel()
        self.failures = failures
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, model_name, device):
        with self._lock:
            self.calls += 1
            attempt = self.calls
        if self.delay:
            time.sleep(self.delay)
        if attempt <= self.failures:
            raise OSError(f"cannot download {model_name}")
        return self.model


def _provider(loader, dimensions: int = 2) -> LocalEmbeddingProvider:
    return LocalEmbeddingProvider(model_name="test-model", dimensions=dimensions, loader=loader)


# =============================================================================
# Mean pooling
# =============================================================================


class TestMeanPool:
    def test_ignores_masked_tokens(self):
        tokens = np.array([[1.0, 2.0], [3.0, 4.0], [100.0, 100.0]])
        assert mean_pool(tokens, np.array([1, 1, 0])).tolist() == [2.0, 3.0]

    def test_accepts_batched_shape(self):
        tokens = np.array([[[2.0, 2.0], [4.0, 6.0]]])
        assert mean_pool(tokens, np.array([[1, 1]])).tolist() == [3.0, 4.0]

    def test_all_masked_gives_zero_vector(self):
        tokens = np.array([[1.0, 2.0]])
        assert mean_pool(tokens, np.array([0])).tolist() == [0.0, 0.0]

    def test_mask_length_mismatch(self):
        with pytest.raises(ValueError, match="attention mask"):
            mean_pool(np.ones((3, 2)), np.ones(2))


# =============================================================================
# Lifecycle
# =============================================================================


class TestInitialization:
    def test_status_never_triggers_load(self):
        loader = CountingLoader()
        provider = _provider(loader)

        assert provider.method == EmbeddingMethod.LOCAL
        assert provider.model_tag == "local"
        assert provider.is_ready() is False
        assert provider.status() == {"ready": False, "loading": False, "error": None}
        assert loader.calls == 0

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_share_one_load(self):
        """Simultaneous first embeds converge on a single load attempt."""
        loader = CountingLoader(delay=0.05)
        provider = _provider(loader)

        vectors = await asyncio.gather(*(provider.embed(f"text {i}") for i in range(5)))

        assert loader.calls == 1
        assert provider.is_ready()
        assert all(v == pytest.approx([0.6, 0.8]) for v in vectors)

    @pytest.mark.asyncio
    async def test_concurrent_waiters_observe_same_failure(self):
        loader = CountingLoader(failures=1, delay=0.05)
        provider = _provider(loader)

        results = await asyncio.gather(*(provider.embed("hello") for _ in range(4)), return_exceptions=True)

        assert loader.calls == 1
        assert all(isinstance(r, EmbeddingUnavailableError) for r in results)
        assert "cannot download test-model" in provider.load_error
        assert provider.is_loading is False

    @pytest.mark.asyncio
    async def test_failed_load_is_retried_on_next_call(self):
        loader = CountingLoader(failures=1)
        provider = _provider(loader)

        with pytest.raises(EmbeddingUnavailableError, match="cannot download"):
            await provider.embed("hello")
        assert provider.status()["error"] is not None

        assert await provider.embed("hello") == pytest.approx([0.6, 0.8])
        assert loader.calls == 2
        assert provider.load_error is None

    @pytest.mark.asyncio
    async def test_preload_returns_awaitable_task(self):
        loader = CountingLoader()
        provider = _provider(loader)

        task = provider.preload()
        assert await task is True
        assert provider.is_ready()

        # Already loaded: no second attempt
        assert await provider.initialize() is True
        assert loader.calls == 1


# =============================================================================
# Embedding
# =============================================================================


class TestEmbed:
    @pytest.mark.asyncio
    async def test_embedding_is_pooled_and_normalized(self):
        model = FakeModel()
        provider = _provider(CountingLoader(model=model))

        vector = await provider.embed("  react hooks  ")

        assert vector == pytest.approx([0.6, 0.8])
        assert model.calls == ["react hooks"]

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_loading(self):
        loader = CountingLoader()
        provider = _provider(loader)

        with pytest.raises(QueryValidationError):
            await provider.embed("   ")
        assert loader.calls == 0

    @pytest.mark.asyncio
    async def test_inference_failure_is_backend_error(self):
        provider = _provider(CountingLoader(model=FakeModel(fail=True)))

        with pytest.raises(EmbeddingBackendError, match="CUDA out of memory"):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_wrong_dimension_raises(self):
        provider = _provider(CountingLoader(), dimensions=384)

        with pytest.raises(DimensionMismatchError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_batch_reports_progress_and_skips_failures(self):
        provider = _provider(CountingLoader())
        progress: list[EmbeddingProgress] = []

        vectors = await provider.embed_batch(["one", "", "three"], progress_callback=progress.append)

        assert vectors[0] == pytest.approx([0.6, 0.8])
        assert vectors[1] is None
        assert vectors[2] == pytest.approx([0.6, 0.8])
        assert [(p.processed, p.total) for p in progress] == [(1, 3), (2, 3), (3, 3)]
        assert progress[-1].percentage == 100

    @pytest.mark.asyncio
    async def test_batch_empty(self):
        loader = CountingLoader()
        assert await _provider(loader).embed_batch([]) == []
        assert loader.calls == 0

    @pytest.mark.asyncio
    async def test_batch_raises_when_model_cannot_load(self):
        provider = _provider(CountingLoader(failures=5))

        with pytest.raises(EmbeddingUnavailableError):
            await provider.embed_batch(["one", "two"])
