"""
Periodic sweep that queues a sync for every repository on a fixed interval.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from syncengine.config import Config
from syncengine.db import Database, utcnow

logger = logging.getLogger(__name__)


class SyncSweeper:
    """Creates sync jobs for all repos that have no active one."""

    def __init__(
        self,
        database: Database,
        interval_seconds: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.interval_seconds = (
            Config.SYNC_SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self._sleep = sleep
        self._running = False

    def sweep(self) -> list[int]:
        """
        Queue a sync for each repo lacking an active sync job.

        Returns:
            IDs of the newly created jobs.
        """
        created_ids = []
        for repo in self.database.list_repos():
            try:
                job_id, created = self.database.create_sync_job(repo.id)
            except Exception as e:
                logger.error(f"Could not queue sync for {repo.full_name}: {e}")
                continue
            if created:
                created_ids.append(job_id)

        self.database.set_metadata("last_sweep_at", utcnow())
        logger.info(f"Sync sweep queued {len(created_ids)} jobs")
        return created_ids

    async def run(self) -> None:
        """Sweep every interval until stop(); an interval of 0 disables it."""
        if self.interval_seconds <= 0:
            logger.info("Periodic sync sweep disabled")
            return

        self._running = True
        logger.info(f"Sync sweeper started (every {self.interval_seconds}s)")
        while self._running:
            await self._sleep(self.interval_seconds)
            if not self._running:
                break
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error running sync sweep: {e}")

    def stop(self) -> None:
        self._running = False
