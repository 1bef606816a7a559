"""
Repository sync workflow.

Runs one claimed sync job: resolves the branch, picks an incremental diff
or a full listing, materializes every changed file and records where the
repository now stands.
"""

import logging
import time
from typing import Callable, Optional

from syncengine import file_utils
from syncengine.db import Database
from syncengine.errors import GitHubError, GitHubNotFoundError, RepoNotFoundError
from syncengine.file_sync import FileMaterializer, FileSyncOutcome, FileSyncResult
from syncengine.github import GitHubClient, make_github_client
from syncengine.models import Repo, SyncConfig, SyncJob, SyncJobStatus
from syncengine.notifier import JobKind, JobProgressEvent, Notifier
from syncengine.rate_limiter import RateLimiter
from syncengine.tree_fetcher import TreeEntry, TreeResolver

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10
FALLBACK_BRANCH = "main"

ClientFactory = Callable[[str, RateLimiter], GitHubClient]


def trigger_embedding_if_needed(database: Database, repo_id: int) -> Optional[int]:
    """
    Queue an embed job when files need chunking or chunks lack embeddings.

    Returns the embed job id, or None if nothing needs doing. Never raises.
    """
    try:
        files_needing_chunking = database.count_files_needing_chunking(repo_id)
        chunks_needing_embedding = database.count_chunks_without_embeddings(repo_id)

        if files_needing_chunking == 0 and chunks_needing_embedding == 0:
            logger.info(f"Repo {repo_id}: all files already have embeddings")
            return None

        job_id, created = database.create_embed_job(repo_id)
        if created:
            logger.info(
                f"Auto-created embed job {job_id} for repo {repo_id}: "
                f"{files_needing_chunking} files need chunking, "
                f"{chunks_needing_embedding} chunks need embedding"
            )
        else:
            logger.info(f"Embed job {job_id} already queued for repo {repo_id}")
        return job_id
    except Exception as e:
        logger.warning(f"Could not auto-trigger embedding for repo {repo_id}: {e}")
        return None


def _is_empty_repository(error: GitHubError) -> bool:
    if isinstance(error, GitHubNotFoundError):
        return True
    # An empty repository answers 409 "Git Repository is empty."
    return error.status == 409 and "empty" in error.message.lower()


class RepoSyncer:
    """Executes sync jobs already claimed by the queue."""

    def __init__(
        self,
        database: Database,
        rate_limiter: RateLimiter,
        notifier: Optional[Notifier] = None,
        client_factory: ClientFactory = make_github_client,
        max_file_size: Optional[int] = None,
    ):
        self.database = database
        self.rate_limiter = rate_limiter
        self.notifier = notifier or Notifier()
        self.client_factory = client_factory
        self.max_file_size = max_file_size

    def _event(self, job: SyncJob, repo: Repo, status: SyncJobStatus, **kwargs) -> JobProgressEvent:
        return JobProgressEvent(
            kind=JobKind.SYNC,
            job_id=job.id,
            repo_id=repo.id,
            status=status.value,
            repo_name=repo.full_name,
            **kwargs,
        )

    async def sync(self, job: SyncJob) -> dict:
        """
        Run a sync job that is in FETCHING_TREE.

        Returns:
            dict: Counters of the finished run.

        Raises:
            Exception: Anything job-fatal; the queue marks the job FAILED.
        """
        start_time = time.time()
        cfg = job.config or SyncConfig()

        repo = self.database.get_repo(job.repo_id)
        if repo is None:
            raise RepoNotFoundError(f"Repo not found: {job.repo_id}")

        logger.info(f"Starting sync job {job.id} for {repo.full_name} (config={cfg})")
        await self.notifier.progress(self._event(job, repo, SyncJobStatus.FETCHING_TREE))

        client = self.client_factory(repo.credential_id, self.rate_limiter)
        async with client:
            resolver = TreeResolver(client)
            materializer = FileMaterializer(self.database, client, self.max_file_size)
            return await self._run(job, repo, cfg, resolver, materializer, start_time)

    async def _resolve_branch(self, resolver: TreeResolver, repo: Repo) -> str:
        # The default branch can change upstream, so always ask
        try:
            branch = await resolver.get_default_branch(repo.full_name)
        except GitHubError as e:
            branch = repo.default_branch or FALLBACK_BRANCH
            logger.warning(f"Could not fetch default branch of {repo.full_name} ({e}), using {branch}")
            return branch

        if branch != repo.default_branch:
            self.database.update_repo_branch(repo.id, branch)
        return branch

    async def _run(
        self,
        job: SyncJob,
        repo: Repo,
        cfg: SyncConfig,
        resolver: TreeResolver,
        materializer: FileMaterializer,
        start_time: float,
    ) -> dict:
        branch = await self._resolve_branch(resolver, repo)

        entries: list[TreeEntry]
        listed_paths: Optional[set[str]] = None
        head_commit_sha: Optional[str] = None
        complete_listing = True
        listing_truncated = False

        compare = None
        if repo.last_commit_sha:
            compare = await resolver.compare_commits(repo.full_name, repo.last_commit_sha, branch)

        if compare is not None:
            head_commit_sha = compare.head_commit_sha
            if compare.total_changes == 0:
                logger.info(f"No changes in {repo.full_name} since last sync")
                return await self._complete(job, repo, head_commit_sha, 0, 0, 0, 0, start_time)

            logger.info(
                f"Incremental sync of {repo.full_name}: {len(compare.added)} added, "
                f"{len(compare.modified)} modified, {len(compare.removed)} removed"
            )
            entries = compare.changed_entries
            materializer.delete_paths(repo.id, compare.removed)
        else:
            try:
                listing = await resolver.fetch_repo_tree(repo.full_name, branch)
            except GitHubError as e:
                if _is_empty_repository(e):
                    logger.warning(f"Repository {repo.full_name} appears to be empty: {e}")
                    return await self._complete(job, repo, None, 0, 0, 0, 0, start_time)
                raise
            head_commit_sha = listing.commit_sha
            entries = listing.entries
            complete_listing = not listing.truncated
            listing_truncated = listing.truncated
            listed_paths = {e.path for e in entries}

        if cfg.max_files and len(entries) > cfg.max_files:
            logger.info(f"Limiting sync of {repo.full_name} to {cfg.max_files} of {len(entries)} files")
            entries = entries[:cfg.max_files]
            complete_listing = False

        total = len(entries)
        self.database.transition_sync_job(job.id, SyncJobStatus.PROCESSING_FILES, total_files=total)
        await self.notifier.progress(self._event(job, repo, SyncJobStatus.PROCESSING_FILES, total=total))

        processed = skipped = failed = 0
        content_files = 0

        for entry in entries:
            limit_reached = cfg.max_content_files is not None and content_files >= cfg.max_content_files
            override = cfg.skip_content or limit_reached
            reason = file_utils.SKIP_CONTENT if cfg.skip_content else file_utils.CONTENT_LIMIT

            try:
                result = await materializer.sync_file(repo, entry, override, reason)
            except Exception as e:
                logger.error(f"Error processing {entry.path}: {e}")
                result = FileSyncResult(FileSyncOutcome.FAILED, error=str(e))

            if result.outcome == FileSyncOutcome.FETCHED:
                content_files += 1
            elif result.skipped:
                skipped += 1
            else:
                failed += 1
            processed += 1

            if processed % PROGRESS_EVERY == 0 or processed == total:
                self.database.update_sync_job_progress(
                    job.id,
                    processed_files=processed,
                    skipped_files=skipped,
                    failed_files=failed,
                )
                await self.notifier.progress(self._event(
                    job, repo, SyncJobStatus.PROCESSING_FILES,
                    processed=processed, total=total, skipped=skipped, failed=failed,
                    current_file=entry.path,
                ))

        if listed_paths is not None:
            if listing_truncated:
                logger.warning(f"Not pruning {repo.full_name}: tree listing was truncated")
            else:
                materializer.delete_removed_files(repo.id, listed_paths)

        # Only advance the diff base when every file of the change set made it
        if not complete_listing or failed:
            head_commit_sha = None

        return await self._complete(job, repo, head_commit_sha, total, processed, skipped, failed, start_time)

    async def _complete(
        self,
        job: SyncJob,
        repo: Repo,
        head_commit_sha: Optional[str],
        total: int,
        processed: int,
        skipped: int,
        failed: int,
        start_time: float,
    ) -> dict:
        current = self.database.get_sync_job(job.id)
        if current is not None and current.status == SyncJobStatus.FETCHING_TREE:
            self.database.transition_sync_job(job.id, SyncJobStatus.PROCESSING_FILES, total_files=total)

        self.database.mark_repo_indexed(repo.id, head_commit_sha)
        self.database.transition_sync_job(
            job.id,
            SyncJobStatus.COMPLETED,
            total_files=total,
            processed_files=processed,
            skipped_files=skipped,
            failed_files=failed,
        )

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Sync job {job.id} for {repo.full_name} completed in {duration_ms}ms: "
            f"{processed} processed, {skipped} skipped, {failed} failed"
        )
        await self.notifier.completed(self._event(
            job, repo, SyncJobStatus.COMPLETED,
            processed=processed, total=total, skipped=skipped, failed=failed,
            duration_ms=duration_ms,
        ))

        embed_job_id = trigger_embedding_if_needed(self.database, repo.id)

        return {
            "job_id": job.id,
            "repo_id": repo.id,
            "total_files": total,
            "processed_files": processed,
            "skipped_files": skipped,
            "failed_files": failed,
            "head_commit_sha": head_commit_sha,
            "embed_job_id": embed_job_id,
            "duration_ms": duration_ms,
        }
