"""
Queue processor that polls the database for pending jobs.

Sync jobs always go before embed jobs; within a kind the oldest job wins.
Several processors may share one database: a job runs only in the
processor whose atomic claim succeeded.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from syncengine.config import Config
from syncengine.db import Database
from syncengine.embed_sync import EmbedSyncer
from syncengine.errors import RepoNotFoundError
from syncengine.models import EmbedConfig, EmbedJobStatus, SyncConfig, SyncJobStatus
from syncengine.notifier import JobKind, JobProgressEvent, Notifier
from syncengine.queue.recovery import recover_stuck_jobs
from syncengine.repo_sync import RepoSyncer

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Single-job-at-a-time worker over the sync and embed queues."""

    def __init__(
        self,
        database: Database,
        repo_syncer: RepoSyncer,
        embed_syncer: EmbedSyncer,
        notifier: Optional[Notifier] = None,
        poll_interval_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self.repo_syncer = repo_syncer
        self.embed_syncer = embed_syncer
        self.notifier = notifier or Notifier()
        self.poll_interval_ms = Config.QUEUE_POLL_INTERVAL_MS if poll_interval_ms is None else poll_interval_ms
        self._sleep = sleep
        self._running = False
        self.current_job: Optional[tuple[str, int]] = None

    @property
    def running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        kind, job_id = self.current_job or (None, None)
        return {"running": self._running, "current_job_kind": kind, "current_job_id": job_id}

    async def run(self) -> None:
        """Poll until stop() is called."""
        if self._running:
            logger.warning("Queue processor already running")
            return

        self._running = True
        logger.info(f"Queue processor started (poll interval {self.poll_interval_ms}ms)")

        while self._running:
            try:
                await self.process_next_job()
            except Exception as e:
                logger.error(f"Error in poll loop: {e}", exc_info=True)

            if not self._running:
                break
            await self._sleep(self.poll_interval_ms / 1000)

        logger.info("Queue processor stopped")

    def stop(self) -> None:
        """Stop polling once the current job, if any, has finished."""
        if self._running:
            logger.info("Stopping queue processor...")
        self._running = False

    async def wait_for_current_job(self, timeout: float) -> bool:
        """
        Wait until no job is in progress.

        Returns:
            False if a job was still running when the timeout expired.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.current_job is not None:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    async def process_next_job(self) -> Optional[tuple[str, int]]:
        """
        Claim and run the next pending job.

        Returns:
            (kind, job_id) of the job that ran, or None if nothing was claimed.
        """
        sync_job = self.database.get_next_pending_sync_job()
        if sync_job is not None:
            if not self.database.claim_sync_job(sync_job.id):
                logger.debug(f"Sync job {sync_job.id} was claimed by another worker")
                return None

            sync_job.status = SyncJobStatus.FETCHING_TREE
            self.current_job = (JobKind.SYNC.value, sync_job.id)
            logger.info(f"Processing sync job {sync_job.id} for repo {sync_job.repo_id}")
            try:
                await self.repo_syncer.sync(sync_job)
            except Exception as e:
                logger.error(f"Sync job {sync_job.id} failed: {e}", exc_info=True)
                await self._fail_sync_job(sync_job.id, str(e))
            finally:
                self.current_job = None
            return JobKind.SYNC.value, sync_job.id

        embed_job = self.database.get_next_pending_embed_job()
        if embed_job is not None:
            if not self.database.claim_embed_job(embed_job.id):
                logger.debug(f"Embed job {embed_job.id} was claimed by another worker")
                return None

            embed_job.status = EmbedJobStatus.CHUNKING
            self.current_job = (JobKind.EMBED.value, embed_job.id)
            logger.info(f"Processing embed job {embed_job.id} for repo {embed_job.repo_id}")
            try:
                await self.embed_syncer.embed(embed_job)
            except Exception as e:
                logger.error(f"Embed job {embed_job.id} failed: {e}", exc_info=True)
                await self._fail_embed_job(embed_job.id, str(e))
            finally:
                self.current_job = None
            return JobKind.EMBED.value, embed_job.id

        return None

    async def _fail_sync_job(self, job_id: int, error: str) -> None:
        try:
            self.database.transition_sync_job(job_id, SyncJobStatus.FAILED, error=error)
        except Exception as e:
            logger.error(f"Could not mark sync job {job_id} as failed: {e}")
            return

        job = self.database.get_sync_job(job_id)
        await self.notifier.failed(JobProgressEvent(
            kind=JobKind.SYNC,
            job_id=job_id,
            repo_id=job.repo_id,
            status=SyncJobStatus.FAILED.value,
            processed=job.processed_files,
            total=job.total_files or 0,
            skipped=job.skipped_files,
            failed=job.failed_files,
            error=error,
        ))

    async def _fail_embed_job(self, job_id: int, error: str) -> None:
        try:
            self.database.transition_embed_job(job_id, EmbedJobStatus.FAILED, error=error)
        except Exception as e:
            logger.error(f"Could not mark embed job {job_id} as failed: {e}")
            return

        job = self.database.get_embed_job(job_id)
        await self.notifier.failed(JobProgressEvent(
            kind=JobKind.EMBED,
            job_id=job_id,
            repo_id=job.repo_id,
            status=EmbedJobStatus.FAILED.value,
            processed=job.processed_files,
            total=job.total_files or 0,
            chunks_created=job.chunks_created,
            embeddings_generated=job.embeddings_generated,
            failed=job.failed_files,
            error=error,
        ))

    def create_sync_job(self, repo_id: int, config: Optional[SyncConfig] = None) -> int:
        """
        Queue a sync for a repo, or return the job already in flight.

        Raises:
            RepoNotFoundError: If the repo is not registered.
        """
        if self.database.get_repo(repo_id) is None:
            raise RepoNotFoundError(f"Repo not found: {repo_id}")

        job_id, created = self.database.create_sync_job(repo_id, config)
        if created:
            logger.info(f"Created sync job {job_id} for repo {repo_id}")
        else:
            logger.info(f"Sync job {job_id} already active for repo {repo_id}")
        return job_id

    def create_embed_job(self, repo_id: int, config: Optional[EmbedConfig] = None) -> int:
        """
        Queue a chunk/embed run for a repo, or return the job already in flight.

        Raises:
            RepoNotFoundError: If the repo is not registered.
        """
        if self.database.get_repo(repo_id) is None:
            raise RepoNotFoundError(f"Repo not found: {repo_id}")

        job_id, created = self.database.create_embed_job(repo_id, config)
        if created:
            logger.info(f"Created embed job {job_id} for repo {repo_id}")
        else:
            logger.info(f"Embed job {job_id} already active for repo {repo_id}")
        return job_id

    async def recover_stuck_jobs(self) -> int:
        return await recover_stuck_jobs(self.database, self.notifier)
