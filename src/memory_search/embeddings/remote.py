"""
Hosted embedding backend (OpenAI embeddings API).

Needs an API key set through ``configure``; without one the backend reports
not-ready and every call raises ``EmbeddingUnavailableError``.  SDK
exceptions are normalised into the package's error classes so callers never
import ``openai`` to tell an invalid key from a rate limit.

The configured client is replaced wholesale on each ``configure`` call:
last writer wins.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from ..errors import (
    DimensionMismatchError,
    EmbeddingBackendError,
    EmbeddingUnavailableError,
    InvalidCredentialError,
    RateLimitedError,
    UpstreamServiceError,
)
from .base import EmbeddingMethod, EmbeddingProgress, EmbeddingProvider, ProgressCallback, require_text

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_MODEL = "text-embedding-3-small"
DEFAULT_REMOTE_DIMENSIONS = 1536
DEFAULT_BATCH_SIZE = 20
DEFAULT_BATCH_DELAY_SECONDS = 0.1
# text-embedding-3-small: $0.00002 / 1K tokens
COST_PER_THOUSAND_TOKENS = 0.00002

ClientFactory = Callable[[str], Any]
Sleep = Callable[[float], Awaitable[None]]


def translate_openai_error(exc: Exception) -> EmbeddingBackendError:
    """Map an OpenAI SDK (or transport) exception onto the package error classes."""
    status = getattr(exc, "status_code", None)
    if isinstance(exc, openai.AuthenticationError) or status == 401:
        return InvalidCredentialError("Invalid OpenAI API key")
    if isinstance(exc, openai.RateLimitError) or status == 429:
        return RateLimitedError("OpenAI rate limit exceeded. Please try again later.")
    if isinstance(exc, openai.InternalServerError) or (isinstance(status, int) and status >= 500):
        return UpstreamServiceError("OpenAI service error. Please try again later.")
    return EmbeddingBackendError(f"OpenAI API error: {exc}")


async def _close_quietly(client: Any) -> None:
    close = getattr(client, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.debug(f"Error closing OpenAI client: {e}")


class RemoteEmbeddingProvider(EmbeddingProvider):
    """OpenAI-backed embeddings, configured at runtime with an API key."""

    method = EmbeddingMethod.REMOTE

    def __init__(
        self,
        model: str = DEFAULT_REMOTE_MODEL,
        dimensions: int = DEFAULT_REMOTE_DIMENSIONS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        client_factory: ClientFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self._base_url = base_url
        self._timeout = timeout_seconds
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._client: Any = None

    def _default_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, base_url=self._base_url, timeout=self._timeout)

    # -- configuration -------------------------------------------------------

    def configure(self, api_key: str | None) -> bool:
        """Install (or clear, when blank) the API key. Returns whether the backend is now configured."""
        if not api_key or not api_key.strip():
            self._client = None
            return False

        try:
            self._client = self._client_factory(api_key.strip())
        except Exception as e:
            logger.error(f"Failed to configure OpenAI client: {e}")
            self._client = None
            return False

        logger.info("OpenAI API configured successfully")
        return True

    def is_configured(self) -> bool:
        return self._client is not None

    def is_ready(self) -> bool:
        return self.is_configured()

    def status(self) -> dict[str, Any]:
        return {"configured": self.is_configured(), "model": self.model}

    async def test_credential(self, api_key: str | None) -> bool:
        """Verify ``api_key`` with one trial call, leaving the configured client untouched."""
        if not api_key or not api_key.strip():
            return False

        client = None
        try:
            client = self._client_factory(api_key.strip())
            await client.embeddings.create(model=self.model, input="test", encoding_format="float")
            return True
        except Exception as e:
            logger.warning(f"OpenAI API key test failed: {e}")
            return False
        finally:
            if client is not None:
                await _close_quietly(client)

    @staticmethod
    def estimate_cost(token_count: int) -> float:
        """Estimated USD cost of embedding ``token_count`` tokens."""
        return token_count / 1000 * COST_PER_THOUSAND_TOKENS

    # -- embedding -----------------------------------------------------------

    def _require_client(self) -> Any:
        if self._client is None:
            raise EmbeddingUnavailableError("OpenAI is not configured. Please provide an API key.")
        return self._client

    async def _create(self, client: Any, payload: str | list[str]) -> Any:
        try:
            return await client.embeddings.create(model=self.model, input=payload, encoding_format="float")
        except Exception as e:
            # Transport errors outside the SDK hierarchy still get a status-based mapping
            raise translate_openai_error(e) from e

    def _check_dimensions(self, vector: list[float]) -> list[float]:
        if len(vector) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(vector))
        return vector

    async def embed(self, text: str) -> list[float]:
        text = require_text(text)
        client = self._require_client()

        response = await self._create(client, text)

        data = getattr(response, "data", None)
        if not data or not getattr(data[0], "embedding", None):
            raise EmbeddingBackendError("Invalid response from OpenAI API")
        return self._check_dimensions(list(data[0].embedding))

    async def embed_batch(
        self,
        texts: Sequence[str],
        progress_callback: ProgressCallback | None = None,
    ) -> list[list[float] | None]:
        """Embed in chunks of ``batch_size`` with a fixed pause between chunks.

        A failing chunk aborts the batch with the translated error.
        """
        client = self._require_client()
        if not texts:
            return []

        total = len(texts)
        embeddings: list[list[float] | None] = []

        for offset in range(0, total, self.batch_size):
            chunk = [require_text(t) for t in texts[offset : offset + self.batch_size]]
            try:
                response = await self._create(client, chunk)
            except EmbeddingBackendError as e:
                logger.error(f"Error processing batch {offset // self.batch_size + 1}: {e}")
                raise

            items = sorted(response.data, key=lambda item: getattr(item, "index", 0))
            if len(items) != len(chunk):
                raise EmbeddingBackendError(
                    f"OpenAI returned {len(items)} embeddings for a batch of {len(chunk)}"
                )
            embeddings.extend(self._check_dimensions(list(item.embedding)) for item in items)

            processed = min(offset + self.batch_size, total)
            if progress_callback:
                progress_callback(EmbeddingProgress(processed=processed, total=total))

            if processed < total:
                await self._sleep(self.batch_delay_seconds)

        return embeddings
