#!/usr/bin/env python3
"""Backfill embeddings for stored memories.

Embeds every memory that has no vector yet (or all of them with --force),
one record at a time, committing each vector as it is produced.  Safe to
interrupt: a rerun picks up where the last one stopped.

Usage:
    # Local model (default when no OpenAI key is configured)
    python scripts/backfill_embeddings.py [--force]

    # Hosted embeddings
    MEMSEARCH_REMOTE_API_KEY=sk-... python scripts/backfill_embeddings.py --method remote

    # Coverage only
    python scripts/backfill_embeddings.py --stats
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from memory_search.config import Settings, configure_logging  # noqa: E402
from memory_search.errors import MemorySearchError  # noqa: E402
from memory_search.factory import create_search_coordinator  # noqa: E402
from memory_search.models.validators import EmbeddingMethod  # noqa: E402

logger = logging.getLogger(__name__)


async def run(args: argparse.Namespace, config: Settings) -> int:
    coordinator = await create_search_coordinator(config)
    try:
        stats = await coordinator.get_embedding_stats()
        logger.info(
            f"Memories: {stats.total_memories} total, {stats.memories_with_embeddings} embedded "
            f"({stats.remote_embeddings} remote, {stats.local_embeddings} local), coverage {stats.coverage}%"
        )
        if args.stats:
            return 0

        report = await coordinator.generate_embeddings(method=args.method, force=args.force)
        logger.info(f"Backfill complete: {report.message} [{report.processed}/{report.total}, {report.failed} failed]")
        return 1 if report.failed else 0
    except MemorySearchError as e:
        logger.error(f"Backfill aborted: {e}")
        return 1
    finally:
        await coordinator.repository.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill memory embeddings")
    parser.add_argument(
        "--method",
        type=EmbeddingMethod,
        choices=[EmbeddingMethod.AUTO, EmbeddingMethod.LOCAL, EmbeddingMethod.REMOTE],
        default=EmbeddingMethod.AUTO,
        help="Embedding backend: 'auto' (default, remote if configured else local), 'local' or 'remote'",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-embed ALL memories, even those that already have an embedding",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (overrides MEMSEARCH_STORAGE_SQLITE_PATH)",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Only report embedding coverage",
    )
    args = parser.parse_args()

    config = Settings()
    if args.db is not None:
        config.storage.sqlite_path = args.db
    configure_logging(config.logging)

    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
