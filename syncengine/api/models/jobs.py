"""
Job-related API models: sync and embed job requests and status.
"""

from typing import Optional

from pydantic import BaseModel, Field


class SyncJobRequest(BaseModel):
    """Overrides for a sync run."""
    max_files: Optional[int] = Field(default=None, ge=1)
    max_content_files: Optional[int] = Field(default=None, ge=0)
    skip_content: bool = False


class EmbedJobRequest(BaseModel):
    """Overrides for a chunk/embed run."""
    chunk_size: Optional[int] = Field(default=None, ge=1)
    overlap: Optional[int] = Field(default=None, ge=0)


class JobCreatedResponse(BaseModel):
    """Result of queueing a job; an already active job is returned as-is."""
    job_id: int
    repo_id: int
    kind: str
    status: str
    created: bool


class SyncJobResponse(BaseModel):
    id: int
    repo_id: int
    status: str
    total_files: Optional[int] = None
    processed_files: int
    skipped_files: int
    failed_files: int
    config: Optional[SyncJobRequest] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class EmbedJobResponse(BaseModel):
    id: int
    repo_id: int
    status: str
    total_files: Optional[int] = None
    processed_files: int
    chunks_created: int
    embeddings_generated: int
    failed_files: int
    config: Optional[EmbedJobRequest] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class JobListResponse(BaseModel):
    sync_jobs: list[SyncJobResponse] = []
    embed_jobs: list[EmbedJobResponse] = []
