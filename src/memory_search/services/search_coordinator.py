"""
Search Coordinator - orchestrates parsing, embedding, ranking and fallback.

One request runs as one sequential pipeline:

1. reject an empty query
2. parse it into filters and semantic terms
3. resolve which embedding backend to use
4. keyword-only search when no backend is usable
5. embed the semantic terms, falling back to keyword search on any failure
6. rank stored vectors by cosine similarity
7. optionally fuse the vector ranking with lexical relevance

The coordinator also owns the batch backfill that gives stored memories
their embeddings, similar-memory lookup and coverage statistics.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from ..config import BackfillSettings, SearchSettings
from ..embeddings.base import EmbeddingProgress, EmbeddingProvider, ProgressCallback
from ..embeddings.local import LocalEmbeddingProvider
from ..embeddings.remote import RemoteEmbeddingProvider
from ..errors import (
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingUnavailableError,
    InvalidCredentialError,
    MemoryNotFoundError,
    QueryValidationError,
    RepositoryError,
)
from ..models.memory import Memory
from ..models.search import (
    BackfillReport,
    EmbeddingStats,
    ParsedQuery,
    ProviderStatus,
    ScoredResult,
    SearchResponse,
)
from ..models.validators import EmbeddingMethod
from ..storage.base import MemoryFilter, MemoryRepository
from ..utils.hybrid_search import combine_results_weighted
from ..utils.query_parser import QueryParser, format_parsed_query
from ..utils.similarity import batch_score, rank

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _structured_filter(parsed: ParsedQuery, **extra) -> MemoryFilter:
    """Date/domain/tag constraints shared by the keyword and vector paths."""
    return MemoryFilter(
        date_range=parsed.date_filter,
        domain=parsed.domain,
        tags=parsed.tags,
        **extra,
    )


class SearchCoordinator:
    """
    Entry point for natural-language memory search.

    Providers and repository are injected, so one process can run several
    coordinators (or tests can run one against fakes) without shared state.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        local_provider: LocalEmbeddingProvider,
        remote_provider: RemoteEmbeddingProvider,
        parser: QueryParser | None = None,
        search_settings: SearchSettings | None = None,
        backfill_settings: BackfillSettings | None = None,
        sleep: Sleep = asyncio.sleep,
        preload_task: asyncio.Task | None = None,
    ):
        self.repository = repository
        self.local = local_provider
        self.remote = remote_provider
        self.search_settings = search_settings or SearchSettings()
        self.backfill_settings = backfill_settings or BackfillSettings()
        self.parser = parser or QueryParser(week_start=self.search_settings.week_start)
        self._sleep = sleep
        # Background local model load started at wiring time, if any
        self.preload_task = preload_task

    # -- provider selection --------------------------------------------------

    def _provider(self, method: EmbeddingMethod) -> EmbeddingProvider:
        if method == EmbeddingMethod.REMOTE:
            return self.remote
        if method == EmbeddingMethod.LOCAL:
            return self.local
        raise QueryValidationError(f"No embedding provider for method '{method}'")

    def resolve_method(self, requested: EmbeddingMethod | str = EmbeddingMethod.AUTO) -> EmbeddingMethod:
        """
        Decide which backend a search request uses.

        AUTO prefers the remote backend when configured, then the local model
        when already loaded, then keyword search.  An explicit remote request
        without a configured key raises; an explicit local request loads the
        model on demand.

        Raises:
            EmbeddingUnavailableError: REMOTE requested but not configured
        """
        method = EmbeddingMethod(requested)

        if method == EmbeddingMethod.AUTO:
            if self.remote.is_configured():
                return EmbeddingMethod.REMOTE
            if self.local.is_ready():
                return EmbeddingMethod.LOCAL
            return EmbeddingMethod.KEYWORD

        if method == EmbeddingMethod.REMOTE and not self.remote.is_configured():
            raise EmbeddingUnavailableError("OpenAI is not configured. Please provide an API key.")

        return method

    def _resolve_backfill_method(self, requested: EmbeddingMethod | str) -> EmbeddingMethod:
        method = EmbeddingMethod(requested)
        if method == EmbeddingMethod.KEYWORD:
            raise QueryValidationError("Keyword search does not produce embeddings")
        if method == EmbeddingMethod.AUTO:
            return EmbeddingMethod.REMOTE if self.remote.is_configured() else EmbeddingMethod.LOCAL
        if method == EmbeddingMethod.REMOTE and not self.remote.is_configured():
            raise EmbeddingUnavailableError("OpenAI is not configured. Please provide an API key.")
        return method

    # -- search --------------------------------------------------------------

    async def search(
        self,
        query: str,
        method: EmbeddingMethod | str = EmbeddingMethod.AUTO,
        hybrid: bool = False,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> SearchResponse:
        """
        Run one natural-language search.

        Args:
            query: Free-text query, e.g. "articles from github about react last week"
            method: Embedding backend to use, or AUTO
            hybrid: Blend vector similarity with lexical relevance
            limit: Maximum results (defaults to ``SearchSettings.default_limit``)
            threshold: Minimum cosine similarity (defaults to ``SearchSettings.similarity_threshold``)

        Returns:
            SearchResponse describing which path produced the results

        Raises:
            QueryValidationError: query is empty or limit is below 1
        """
        if query is None or not query.strip():
            raise QueryValidationError("Search query is required")

        if limit is None:
            limit = self.search_settings.default_limit
        elif limit < 1:
            raise QueryValidationError(f"limit must be at least 1, got {limit}")
        threshold = self.search_settings.similarity_threshold if threshold is None else threshold

        parsed = self.parser.parse(query)
        logger.debug(f"Parsed query: {format_parsed_query(parsed)}")

        try:
            resolved = self.resolve_method(method)
        except EmbeddingUnavailableError as e:
            logger.warning(f"Requested embedding method '{method}' unavailable, falling back to keyword search: {e}")
            return await self._keyword_response(parsed, limit, fallback_reason=str(e))

        if resolved == EmbeddingMethod.KEYWORD:
            return await self._keyword_response(parsed, limit)

        provider = self._provider(resolved)
        try:
            query_vector = await provider.embed(parsed.search_text)
        except (EmbeddingError, DimensionMismatchError) as e:
            logger.warning(f"Embedding generation failed ({resolved}), falling back to keyword search: {e}")
            return await self._keyword_response(parsed, limit, fallback_reason=str(e))

        vector_results = await self._vector_search(parsed, query_vector, limit, threshold)

        if not hybrid:
            return SearchResponse(
                search_type="semantic",
                embedding_method=resolved,
                parsed_query=parsed,
                results=vector_results,
            )

        keyword_results = await self.keyword_search(parsed, limit * 2)
        fused = combine_results_weighted(
            vector_results,
            keyword_results,
            vector_weight=self.search_settings.vector_weight,
            keyword_weight=self.search_settings.keyword_weight,
            keyword_score_scale=self.search_settings.keyword_score_scale,
            limit=limit,
        )
        logger.debug(
            f"Hybrid search fused {len(vector_results)} vector and {len(keyword_results)} keyword hits into {len(fused)}"
        )
        return SearchResponse(
            search_type="hybrid",
            embedding_method=resolved,
            parsed_query=parsed,
            results=fused,
        )

    async def _keyword_response(
        self, parsed: ParsedQuery, limit: int, fallback_reason: str | None = None
    ) -> SearchResponse:
        return SearchResponse(
            search_type="keyword",
            embedding_method=EmbeddingMethod.KEYWORD,
            parsed_query=parsed,
            results=await self.keyword_search(parsed, limit),
            fallback_reason=fallback_reason,
        )

    async def keyword_search(self, parsed: ParsedQuery, limit: int) -> list[ScoredResult]:
        """Lexical search on the semantic terms under the structured filters, most relevant first."""
        hits = await self.repository.search_text(
            _structured_filter(parsed, text_query=parsed.search_text, limit=limit)
        )
        return [ScoredResult(memory=memory, keyword_score=score) for memory, score in hits[:limit]]

    async def _vector_search(
        self, parsed: ParsedQuery, query_vector: list[float], limit: int, threshold: float
    ) -> list[ScoredResult]:
        candidates = await self.repository.find_all(_structured_filter(parsed, has_embedding=True))
        comparable = self._same_dimension(candidates, len(query_vector))
        return rank(batch_score(query_vector, comparable), threshold=threshold, limit=limit)

    @staticmethod
    def _same_dimension(candidates: list[Memory], dimensions: int) -> list[Memory]:
        comparable = [m for m in candidates if m.embedding is not None and len(m.embedding) == dimensions]
        skipped = len(candidates) - len(comparable)
        if skipped:
            logger.debug(f"Skipped {skipped} memories embedded by a different backend")
        return comparable

    # -- embeddings ----------------------------------------------------------

    async def _embed_and_store(self, provider: EmbeddingProvider, memory: Memory) -> list[float]:
        vector = await provider.embed(memory.embedding_text())
        if len(vector) != provider.dimensions:
            raise DimensionMismatchError(provider.dimensions, len(vector))
        await self.repository.update_embedding(
            memory.id, vector, provider.model_tag, datetime.now(timezone.utc)
        )
        return vector

    async def embed_memory(self, memory_id: str, method: EmbeddingMethod | str = EmbeddingMethod.AUTO) -> Memory:
        """
        Embed and persist a single memory, e.g. right after it was saved.

        Raises:
            MemoryNotFoundError: no memory with that id
            EmbeddingUnavailableError: the backend is not configured or failed to load
            EmbeddingBackendError: the embedding call failed
        """
        memory = await self.repository.find_by_id(memory_id)
        if memory is None:
            raise MemoryNotFoundError(memory_id)

        resolved = self._resolve_backfill_method(method)
        provider = self._provider(resolved)
        vector = await self._embed_and_store(provider, memory)

        logger.info(f"Generated {resolved} embedding for memory {memory_id}")
        return memory.model_copy(
            update={
                "embedding": vector,
                "embedding_model": provider.model_tag,
                "embedding_generated_at": datetime.now(timezone.utc),
            }
        )

    async def generate_embeddings(
        self,
        method: EmbeddingMethod | str = EmbeddingMethod.AUTO,
        force: bool = False,
        progress_callback: ProgressCallback | None = None,
    ) -> BackfillReport:
        """
        Backfill embeddings for stored memories.

        Records are processed one at a time and each write commits on its
        own, so an interrupted run keeps everything already stored.  A
        failing record is counted and skipped.

        Args:
            method: Backend for the whole batch (AUTO = remote if configured, else local)
            force: Re-embed memories that already have an embedding
            progress_callback: Called after every record

        Returns:
            BackfillReport with processed/failed/total counts

        Raises:
            EmbeddingUnavailableError: the chosen backend cannot run at all
        """
        resolved = self._resolve_backfill_method(method)
        provider = self._provider(resolved)

        if resolved == EmbeddingMethod.LOCAL and not await self.local.initialize():
            raise EmbeddingUnavailableError(
                f"Local embedding model failed to load: {self.local.load_error or 'unknown error'}"
            )

        memories = await self.repository.find_all(None if force else MemoryFilter(has_embedding=False))
        total = len(memories)

        if total == 0:
            logger.info("No memories need embeddings")
            return BackfillReport(method=resolved, message="All memories already have embeddings")

        logger.info(f"Generating {resolved} embeddings for {total} memories")
        processed = 0
        failed = 0
        delay = self.backfill_settings.remote_delay_seconds if resolved == EmbeddingMethod.REMOTE else 0.0
        log_every = self.backfill_settings.progress_log_every

        for i, memory in enumerate(memories):
            try:
                await self._embed_and_store(provider, memory)
                processed += 1
            except (EmbeddingError, DimensionMismatchError, RepositoryError) as e:
                logger.error(f"Error generating embedding for memory {memory.id}: {e}")
                failed += 1

            done = i + 1
            if done % log_every == 0:
                logger.info(f"Processed {done}/{total} memories")
            if progress_callback:
                progress_callback(EmbeddingProgress(processed=done, total=total))

            if delay and done < total:
                await self._sleep(delay)

        message = f"Generated embeddings for {processed} memories"
        if failed:
            message += f" ({failed} failed)"
        logger.info(message)
        return BackfillReport(method=resolved, processed=processed, failed=failed, total=total, message=message)

    # -- similar / stats -----------------------------------------------------

    async def find_similar(self, memory_id: str, limit: int | None = None) -> list[ScoredResult]:
        """
        Memories most similar to an existing one, by stored embedding.

        Raises:
            MemoryNotFoundError: no memory with that id
            EmbeddingUnavailableError: the memory has no embedding yet
            QueryValidationError: limit is below 1
        """
        if limit is None:
            limit = self.search_settings.similar_limit
        elif limit < 1:
            raise QueryValidationError(f"limit must be at least 1, got {limit}")

        source = await self.repository.find_by_id(memory_id)
        if source is None:
            raise MemoryNotFoundError(memory_id)
        if not source.has_embedding:
            raise EmbeddingUnavailableError(f"Memory {memory_id} has no embedding")

        candidates = await self.repository.find_all(MemoryFilter(has_embedding=True, exclude_id=memory_id))
        comparable = self._same_dimension(candidates, len(source.embedding))
        return rank(batch_score(source.embedding, comparable), limit=limit)

    async def get_embedding_stats(self) -> EmbeddingStats:
        total = await self.repository.count()
        with_embeddings = await self.repository.count(MemoryFilter(has_embedding=True))
        remote = await self.repository.count(MemoryFilter(embedding_model="remote"))
        local = await self.repository.count(MemoryFilter(embedding_model="local"))

        return EmbeddingStats(
            total_memories=total,
            memories_with_embeddings=with_embeddings,
            memories_without_embeddings=total - with_embeddings,
            remote_embeddings=remote,
            local_embeddings=local,
            coverage=round(with_embeddings / total * 100) if total else 0,
        )

    # -- settings ------------------------------------------------------------

    def status(self) -> ProviderStatus:
        return ProviderStatus(
            remote_configured=self.remote.is_configured(),
            local_ready=self.local.is_ready(),
            local_loading=self.local.is_loading,
            local_error=self.local.load_error,
        )

    async def update_search_settings(self, api_key: str | None = None) -> ProviderStatus:
        """
        Install a new remote API key after verifying it.

        ``None`` leaves the configuration alone; a blank string removes the key.

        Raises:
            InvalidCredentialError: the key failed the trial call
        """
        if api_key is not None:
            if not api_key.strip():
                self.remote.configure(None)
                logger.info("OpenAI API key cleared")
            elif await self.remote.test_credential(api_key):
                self.remote.configure(api_key)
            else:
                raise InvalidCredentialError("Invalid OpenAI API key")
        return self.status()
