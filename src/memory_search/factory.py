"""
Wiring: settings to providers to repository to coordinator.

Entry points call ``create_search_coordinator``; tests build the pieces
directly with explicit arguments instead.
"""

import logging

from .config import Settings
from .embeddings.local import LocalEmbeddingProvider
from .embeddings.remote import RemoteEmbeddingProvider
from .services.search_coordinator import SearchCoordinator
from .storage.base import MemoryRepository
from .storage.factory import create_repository
from .utils.query_parser import QueryParser

logger = logging.getLogger(__name__)


def create_local_provider(config: Settings) -> LocalEmbeddingProvider:
    return LocalEmbeddingProvider(
        model_name=config.local.model_name,
        dimensions=config.local.dimensions,
        device=config.local.device,
    )


def create_remote_provider(config: Settings) -> RemoteEmbeddingProvider:
    provider = RemoteEmbeddingProvider(
        model=config.remote.model,
        dimensions=config.remote.dimensions,
        batch_size=config.remote.batch_size,
        batch_delay_seconds=config.remote.batch_delay_seconds,
        base_url=config.remote.base_url,
        timeout_seconds=config.remote.timeout_seconds,
    )
    if config.remote.api_key is not None:
        provider.configure(config.remote.api_key.get_secret_value())
    return provider


async def create_search_coordinator(
    config: Settings | None = None,
    repository: MemoryRepository | None = None,
) -> SearchCoordinator:
    """
    Build a ready-to-use coordinator.

    Args:
        config: Settings tree (defaults to the process-wide ``settings``)
        repository: Existing repository; a SQLite one is created when omitted

    Returns:
        SearchCoordinator wired to both embedding backends; with
        ``local.preload`` set, its ``preload_task`` is the in-flight model load
    """
    if config is None:
        from .config import settings

        config = settings

    local = create_local_provider(config)
    remote = create_remote_provider(config)

    preload_task = None
    if config.local.preload:
        # Searches use keyword mode until the task completes
        preload_task = local.preload()
        logger.info(f"Preloading local embedding model {config.local.model_name}")

    if repository is None:
        repository = await create_repository(config.storage)

    return SearchCoordinator(
        repository=repository,
        local_provider=local,
        remote_provider=remote,
        parser=QueryParser(week_start=config.search.week_start),
        search_settings=config.search,
        backfill_settings=config.backfill,
        preload_task=preload_task,
    )
