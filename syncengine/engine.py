"""
Wiring for the engine's long-lived services.

Entry points (API app, CLI) build one Engine and hand its parts to
whoever needs them; nothing in the pipeline reaches for globals.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from syncengine.db import Database
from syncengine.embed_sync import EmbedSyncer
from syncengine.github import make_github_client
from syncengine.llm import EmbeddingProvider
from syncengine.notifier import Notifier, build_default_notifier
from syncengine.queue.processor import QueueProcessor
from syncengine.queue.sweeper import SyncSweeper
from syncengine.rate_limiter import RateLimiter
from syncengine.repo_sync import ClientFactory, RepoSyncer

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    database: Database
    rate_limiter: RateLimiter
    notifier: Notifier
    repo_syncer: RepoSyncer
    embed_syncer: EmbedSyncer
    processor: QueueProcessor
    sweeper: SyncSweeper

    def stop(self) -> None:
        self.processor.stop()
        self.sweeper.stop()

    async def close(self) -> None:
        """Release the embedding provider and notifier HTTP clients."""
        await self.embed_syncer.close()
        await self.notifier.close()


def build_engine(
    database: Optional[Database] = None,
    provider: Optional[EmbeddingProvider] = None,
    notifier: Optional[Notifier] = None,
    client_factory: ClientFactory = make_github_client,
    poll_interval_ms: Optional[int] = None,
    sweep_interval_seconds: Optional[int] = None,
) -> Engine:
    """
    Construct every service with defaults from Config.

    The embedding provider is created lazily on the first embed job when
    none is passed, so sync-only usage needs no provider credentials.
    """
    database = database or Database()
    notifier = notifier or build_default_notifier()
    rate_limiter = RateLimiter(database)

    repo_syncer = RepoSyncer(database, rate_limiter, notifier, client_factory=client_factory)
    embed_syncer = EmbedSyncer(database, provider=provider, notifier=notifier)
    processor = QueueProcessor(
        database,
        repo_syncer,
        embed_syncer,
        notifier=notifier,
        poll_interval_ms=poll_interval_ms,
    )
    sweeper = SyncSweeper(database, interval_seconds=sweep_interval_seconds)

    return Engine(
        database=database,
        rate_limiter=rate_limiter,
        notifier=notifier,
        repo_syncer=repo_syncer,
        embed_syncer=embed_syncer,
        processor=processor,
        sweeper=sweeper,
    )
