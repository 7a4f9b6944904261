"""
Unit tests for the hosted (OpenAI) embedding backend.

The provider takes a client factory, so every test runs against an
``AsyncMock`` client; SDK exceptions are built from real ``httpx`` responses.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, call

import httpx
import openai
import pytest

from memory_search.embeddings.base import EmbeddingProgress
from memory_search.embeddings.remote import RemoteEmbeddingProvider, translate_openai_error
from memory_search.errors import (
    DimensionMismatchError,
    EmbeddingBackendError,
    EmbeddingUnavailableError,
    InvalidCredentialError,
    QueryValidationError,
    RateLimitedError,
    UpstreamServiceError,
)
from memory_search.models.validators import EmbeddingMethod

DIMS = 3
_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _status_error(cls, status: int):
    response = httpx.Response(status, request=_REQUEST)
    return cls(f"HTTP {status}", response=response, body=None)


def _response(count: int, start: int = 0):
    """Embeddings response with items deliberately out of index order."""
    items = [SimpleNamespace(index=i, embedding=[float(start + i), 1.0, 0.0]) for i in range(count)]
    return SimpleNamespace(data=list(reversed(items)))


def _client(side_effect=None, return_value=None):
    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=side_effect, return_value=return_value)
    client.close = AsyncMock()
    return client


def _provider(client, **kwargs) -> RemoteEmbeddingProvider:
    kwargs.setdefault("sleep", AsyncMock())
    provider = RemoteEmbeddingProvider(model="test-embed", dimensions=DIMS, client_factory=lambda key: client, **kwargs)
    provider.configure("sk-test")
    return provider


# =============================================================================
# Error translation
# =============================================================================


class TestTranslateOpenAIError:
    def test_authentication(self):
        err = translate_openai_error(_status_error(openai.AuthenticationError, 401))
        assert isinstance(err, InvalidCredentialError)

    def test_rate_limit(self):
        err = translate_openai_error(_status_error(openai.RateLimitError, 429))
        assert isinstance(err, RateLimitedError)

    def test_server_error(self):
        err = translate_openai_error(_status_error(openai.InternalServerError, 503))
        assert isinstance(err, UpstreamServiceError)

    def test_generic_status_error(self):
        err = translate_openai_error(_status_error(openai.BadRequestError, 400))
        assert type(err) is EmbeddingBackendError

    def test_connection_error(self):
        err = translate_openai_error(openai.APIConnectionError(request=_REQUEST))
        assert type(err) is EmbeddingBackendError
        assert "Connection error" in str(err)

    def test_non_sdk_error_with_status(self):
        """Transport errors outside the SDK still map by status code."""
        exc = RuntimeError("boom")
        exc.status_code = 502
        assert isinstance(translate_openai_error(exc), UpstreamServiceError)


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    def test_unconfigured_by_default(self):
        provider = RemoteEmbeddingProvider()
        assert provider.method == EmbeddingMethod.REMOTE
        assert provider.model_tag == "remote"
        assert provider.is_configured() is False
        assert provider.is_ready() is False

    def test_configure_and_clear(self):
        factory = MagicMock(return_value=_client())
        provider = RemoteEmbeddingProvider(client_factory=factory)

        assert provider.configure("  sk-abc  ") is True
        factory.assert_called_once_with("sk-abc")
        assert provider.status() == {"configured": True, "model": "text-embedding-3-small"}

        assert provider.configure("   ") is False
        assert provider.is_configured() is False

    def test_configure_failure_leaves_unconfigured(self):
        provider = RemoteEmbeddingProvider(client_factory=MagicMock(side_effect=ValueError("bad base url")))
        assert provider.configure("sk-abc") is False
        assert provider.is_configured() is False

    @pytest.mark.asyncio
    async def test_embed_unconfigured(self):
        with pytest.raises(EmbeddingUnavailableError, match="not configured"):
            await RemoteEmbeddingProvider().embed("hello")

    @pytest.mark.asyncio
    async def test_test_credential_uses_throwaway_client(self):
        configured = _client()
        trial = _client(return_value=_response(1))
        clients = iter([configured, trial])
        provider = RemoteEmbeddingProvider(client_factory=lambda key: next(clients))
        provider.configure("sk-old")

        assert await provider.test_credential("sk-new") is True

        trial.embeddings.create.assert_awaited_once_with(model=provider.model, input="test", encoding_format="float")
        trial.close.assert_awaited_once()
        configured.embeddings.create.assert_not_awaited()
        assert provider._client is configured

    @pytest.mark.asyncio
    async def test_test_credential_rejected(self):
        trial = _client(side_effect=_status_error(openai.AuthenticationError, 401))
        provider = RemoteEmbeddingProvider(client_factory=lambda key: trial)

        assert await provider.test_credential("sk-bad") is False
        assert await provider.test_credential("") is False
        assert provider.is_configured() is False

    def test_estimate_cost(self):
        assert RemoteEmbeddingProvider.estimate_cost(1000) == pytest.approx(0.00002)
        assert RemoteEmbeddingProvider.estimate_cost(0) == 0


# =============================================================================
# Embedding
# =============================================================================


class TestEmbed:
    @pytest.mark.asyncio
    async def test_single_embedding(self):
        client = _client(return_value=_response(1, start=7))
        provider = _provider(client)

        assert await provider.embed(" hello ") == [7.0, 1.0, 0.0]
        client.embeddings.create.assert_awaited_once_with(model="test-embed", input="hello", encoding_format="float")

    @pytest.mark.asyncio
    async def test_empty_text(self):
        client = _client()
        with pytest.raises(QueryValidationError):
            await _provider(client).embed("")
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sdk_errors_are_translated(self):
        provider = _provider(_client(side_effect=_status_error(openai.RateLimitError, 429)))

        with pytest.raises(RateLimitedError) as exc_info:
            await provider.embed("hello")
        assert isinstance(exc_info.value.__cause__, openai.RateLimitError)

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        provider = _provider(_client(return_value=SimpleNamespace(data=[])))
        with pytest.raises(EmbeddingBackendError, match="Invalid response"):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        response = SimpleNamespace(data=[SimpleNamespace(index=0, embedding=[1.0, 2.0])])
        provider = _provider(_client(return_value=response))
        with pytest.raises(DimensionMismatchError):
            await provider.embed("hello")


class TestEmbedBatch:
    @pytest.mark.asyncio
    async def test_chunks_progress_and_delay(self):
        """45 texts in chunks of 20: three requests, two pauses, progress per chunk."""
        client = _client(side_effect=[_response(20, 0), _response(20, 20), _response(5, 40)])
        sleep = AsyncMock()
        provider = _provider(client, sleep=sleep, batch_size=20, batch_delay_seconds=0.25)
        progress: list[EmbeddingProgress] = []

        vectors = await provider.embed_batch([f"text {i}" for i in range(45)], progress_callback=progress.append)

        assert len(vectors) == 45
        # Results follow the request order, not the response order
        assert [v[0] for v in vectors] == [float(i) for i in range(45)]
        assert client.embeddings.create.await_count == 3
        assert [(p.processed, p.total) for p in progress] == [(20, 45), (40, 45), (45, 45)]
        assert [p.percentage for p in progress] == [44, 89, 100]
        assert sleep.await_args_list == [call(0.25), call(0.25)]

    @pytest.mark.asyncio
    async def test_chunk_failure_aborts_batch(self):
        client = _client(side_effect=[_response(2), _status_error(openai.InternalServerError, 500)])
        provider = _provider(client, batch_size=2)

        with pytest.raises(UpstreamServiceError):
            await provider.embed_batch(["a", "b", "c", "d"])
        assert client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_short_response_rejected(self):
        provider = _provider(_client(return_value=_response(1)), batch_size=5)
        with pytest.raises(EmbeddingBackendError, match="returned 1 embeddings"):
            await provider.embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        client = _client()
        assert await _provider(client).embed_batch([]) == []
        client.embeddings.create.assert_not_awaited()
