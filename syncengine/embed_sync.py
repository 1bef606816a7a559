"""
Chunk and embed workflow.

Phase one re-chunks every file whose content changed since it was last
chunked. Phase two embeds every chunk of the repository that has no
embedding yet, including leftovers from earlier runs.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from syncengine.chunker import TextChunker
from syncengine.config import Config
from syncengine.db import Database
from syncengine.embeddings import EmbeddingBatcher
from syncengine.errors import RepoNotFoundError
from syncengine.llm import EmbeddingProvider, get_embedding_provider
from syncengine.models import EmbedConfig, EmbedJob, EmbedJobStatus, Repo
from syncengine.notifier import JobKind, JobProgressEvent, Notifier

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10


class EmbedSyncer:
    """Executes embed jobs already claimed by the queue."""

    def __init__(
        self,
        database: Database,
        provider: Optional[EmbeddingProvider] = None,
        notifier: Optional[Notifier] = None,
        batch_size: Optional[int] = None,
        batch_delay_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.database = database
        self._provider = provider
        self.notifier = notifier or Notifier()
        self.batch_size = Config.EMBED_BATCH_SIZE if batch_size is None else batch_size
        self.batch_delay_ms = Config.EMBED_BATCH_DELAY_MS if batch_delay_ms is None else batch_delay_ms
        self._sleep = sleep

    @property
    def provider(self) -> EmbeddingProvider:
        """Lazy-load the embedding provider."""
        if self._provider is None:
            self._provider = get_embedding_provider()
        return self._provider

    async def close(self) -> None:
        if self._provider is not None:
            await self._provider.close()

    def _event(self, job: EmbedJob, repo: Repo, status: EmbedJobStatus, **kwargs) -> JobProgressEvent:
        return JobProgressEvent(
            kind=JobKind.EMBED,
            job_id=job.id,
            repo_id=repo.id,
            status=status.value,
            repo_name=repo.full_name,
            **kwargs,
        )

    async def embed(self, job: EmbedJob) -> dict:
        """
        Run an embed job that is in CHUNKING.

        Returns:
            dict: Counters of the finished run.
        """
        start_time = time.time()
        cfg = job.config or EmbedConfig()

        repo = self.database.get_repo(job.repo_id)
        if repo is None:
            raise RepoNotFoundError(f"Repo not found: {job.repo_id}")

        chunker = TextChunker(chunk_size=cfg.chunk_size, overlap=cfg.overlap)
        logger.info(
            f"Starting embed job {job.id} for {repo.full_name} "
            f"(chunk_size={chunker.chunk_size}, overlap={chunker.overlap})"
        )

        files = self.database.get_files_with_content(repo.id)
        total = len(files)
        self.database.update_embed_job_progress(job.id, total_files=total)
        await self.notifier.progress(self._event(job, repo, EmbedJobStatus.CHUNKING, total=total))

        processed = chunks_created = failed = unchanged = 0

        for record in files:
            try:
                if not record.needs_chunking:
                    logger.debug(f"File unchanged, skipping re-chunking: {record.path}")
                    unchanged += 1
                else:
                    chunks = chunker.chunk_text(record.content or "")
                    chunks_created += self.database.replace_file_chunks(record.id, chunks, record.sha)
            except Exception as e:
                logger.error(f"Error chunking {record.path}: {e}")
                failed += 1
            processed += 1

            if processed % PROGRESS_EVERY == 0 or processed == total:
                self.database.update_embed_job_progress(
                    job.id,
                    processed_files=processed,
                    chunks_created=chunks_created,
                    failed_files=failed,
                )
                await self.notifier.progress(self._event(
                    job, repo, EmbedJobStatus.CHUNKING,
                    processed=processed, total=total, chunks_created=chunks_created,
                    failed=failed, current_file=record.path,
                ))

        logger.info(
            f"Chunking phase of job {job.id} complete: {chunks_created} chunks created, "
            f"{unchanged} files unchanged, {failed} failed"
        )

        self.database.transition_embed_job(
            job.id,
            EmbedJobStatus.EMBEDDING,
            processed_files=processed,
            chunks_created=chunks_created,
            failed_files=failed,
        )

        pending = self.database.get_chunks_without_embeddings(repo.id)
        await self.notifier.progress(self._event(
            job, repo, EmbedJobStatus.EMBEDDING,
            processed=processed, total=total, chunks_created=chunks_created, failed=failed,
        ))

        async def on_batch(generated: int) -> None:
            self.database.update_embed_job_progress(job.id, embeddings_generated=generated)
            await self.notifier.progress(self._event(
                job, repo, EmbedJobStatus.EMBEDDING,
                processed=processed, total=total, chunks_created=chunks_created,
                embeddings_generated=generated, failed=failed,
            ))

        generated = 0
        if pending:
            batcher = EmbeddingBatcher(
                self.provider,
                self.database,
                batch_size=self.batch_size,
                batch_delay_ms=self.batch_delay_ms,
                sleep=self._sleep,
            )
            generated = await batcher.embed(pending, on_progress=on_batch)
            if generated < len(pending):
                logger.warning(
                    f"Embed job {job.id}: {len(pending) - generated} chunks left without "
                    f"embeddings, they will be retried on the next run"
                )

        self.database.transition_embed_job(
            job.id,
            EmbedJobStatus.COMPLETED,
            processed_files=processed,
            chunks_created=chunks_created,
            embeddings_generated=generated,
            failed_files=failed,
        )

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Embed job {job.id} for {repo.full_name} completed in {duration_ms}ms: "
            f"{chunks_created} chunks, {generated} embeddings"
        )
        await self.notifier.completed(self._event(
            job, repo, EmbedJobStatus.COMPLETED,
            processed=processed, total=total, chunks_created=chunks_created,
            embeddings_generated=generated, failed=failed, duration_ms=duration_ms,
        ))

        return {
            "job_id": job.id,
            "repo_id": repo.id,
            "total_files": total,
            "processed_files": processed,
            "chunks_created": chunks_created,
            "embeddings_generated": generated,
            "failed_files": failed,
            "pending_chunks": len(pending) - generated,
            "duration_ms": duration_ms,
        }
