"""
Job service: queueing and inspecting sync/embed jobs for the API layer.

Route handlers stay thin; this is where engine records become response
models.
"""

import logging
from datetime import datetime
from typing import Optional

from syncengine.api.models.jobs import (
    EmbedJobRequest,
    EmbedJobResponse,
    JobCreatedResponse,
    JobListResponse,
    SyncJobRequest,
    SyncJobResponse,
)
from syncengine.config import Config
from syncengine.engine import Engine
from syncengine.errors import RepoNotFoundError
from syncengine.models import (
    EmbedConfig,
    EmbedJob,
    EmbedJobStatus,
    SyncConfig,
    SyncJob,
    SyncJobStatus,
)

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def sync_job_to_response(job: SyncJob) -> SyncJobResponse:
    return SyncJobResponse(
        id=job.id,
        repo_id=job.repo_id,
        status=job.status.value,
        total_files=job.total_files,
        processed_files=job.processed_files,
        skipped_files=job.skipped_files,
        failed_files=job.failed_files,
        config=SyncJobRequest(
            max_files=job.config.max_files,
            max_content_files=job.config.max_content_files,
            skip_content=job.config.skip_content,
        ) if job.config else None,
        error=job.error,
        created_at=_iso(job.created_at),
        started_at=_iso(job.started_at),
        completed_at=_iso(job.completed_at),
    )


def embed_job_to_response(job: EmbedJob) -> EmbedJobResponse:
    return EmbedJobResponse(
        id=job.id,
        repo_id=job.repo_id,
        status=job.status.value,
        total_files=job.total_files,
        processed_files=job.processed_files,
        chunks_created=job.chunks_created,
        embeddings_generated=job.embeddings_generated,
        failed_files=job.failed_files,
        config=EmbedJobRequest(
            chunk_size=job.config.chunk_size,
            overlap=job.config.overlap,
        ) if job.config else None,
        error=job.error,
        created_at=_iso(job.created_at),
        started_at=_iso(job.started_at),
        completed_at=_iso(job.completed_at),
    )


class JobService:
    """API-level job operations over the engine database."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.database = engine.database

    def _require_repo(self, repo_id: int) -> None:
        if self.database.get_repo(repo_id) is None:
            raise RepoNotFoundError(f"Repo not found: {repo_id}")

    def queue_sync(self, repo_id: int, request: Optional[SyncJobRequest] = None) -> JobCreatedResponse:
        """
        Raises:
            RepoNotFoundError: If the repo is not registered.
        """
        config = None
        if request is not None and request.model_dump(exclude_defaults=True):
            config = SyncConfig(
                max_files=request.max_files,
                max_content_files=request.max_content_files,
                skip_content=request.skip_content,
            )

        self._require_repo(repo_id)
        job_id, created = self.database.create_sync_job(repo_id, config)
        job = self.database.get_sync_job(job_id)
        logger.info(f"Sync job {job_id} for repo {repo_id} (created={created})")
        return JobCreatedResponse(
            job_id=job_id,
            repo_id=repo_id,
            kind="sync",
            status=job.status.value,
            created=created,
        )

    def queue_embed(self, repo_id: int, request: Optional[EmbedJobRequest] = None) -> JobCreatedResponse:
        """
        Raises:
            RepoNotFoundError: If the repo is not registered.
            ValueError: If overlap is not smaller than chunk size.
        """
        config = None
        if request is not None and (request.chunk_size is not None or request.overlap is not None):
            chunk_size = request.chunk_size or Config.CHUNK_SIZE
            overlap = request.overlap if request.overlap is not None else Config.CHUNK_OVERLAP
            if overlap >= chunk_size:
                raise ValueError(f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})")
            config = EmbedConfig(chunk_size=request.chunk_size, overlap=request.overlap)

        self._require_repo(repo_id)
        job_id, created = self.database.create_embed_job(repo_id, config)
        job = self.database.get_embed_job(job_id)
        logger.info(f"Embed job {job_id} for repo {repo_id} (created={created})")
        return JobCreatedResponse(
            job_id=job_id,
            repo_id=repo_id,
            kind="embed",
            status=job.status.value,
            created=created,
        )

    def get_sync_job(self, job_id: int) -> Optional[SyncJobResponse]:
        job = self.database.get_sync_job(job_id)
        return sync_job_to_response(job) if job else None

    def get_embed_job(self, job_id: int) -> Optional[EmbedJobResponse]:
        job = self.database.get_embed_job(job_id)
        return embed_job_to_response(job) if job else None

    def list_jobs(
        self,
        status: Optional[str] = None,
        repo_id: Optional[int] = None,
        limit: int = 20,
    ) -> JobListResponse:
        """
        Raises:
            ValueError: If status is not a known job status.
        """
        sync_status = embed_status = None
        if status:
            status = status.upper()
            sync_values = {s.value for s in SyncJobStatus}
            embed_values = {s.value for s in EmbedJobStatus}
            if status not in sync_values | embed_values:
                raise ValueError(f"Unknown job status: {status}")
            sync_status = SyncJobStatus(status) if status in sync_values else None
            embed_status = EmbedJobStatus(status) if status in embed_values else None

        sync_jobs = []
        if not status or sync_status:
            sync_jobs = self.database.list_sync_jobs(sync_status, repo_id, limit)
        embed_jobs = []
        if not status or embed_status:
            embed_jobs = self.database.list_embed_jobs(embed_status, repo_id, limit)

        return JobListResponse(
            sync_jobs=[sync_job_to_response(j) for j in sync_jobs],
            embed_jobs=[embed_job_to_response(j) for j in embed_jobs],
        )
