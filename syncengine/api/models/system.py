"""
System-related API models: health and stats.
"""

from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str = "1.0.0"
    worker_running: bool
    current_job_kind: Optional[str] = None
    current_job_id: Optional[int] = None
    embedding_provider: str


class StatsResponse(BaseModel):
    """Database statistics response."""
    repo_count: int
    file_count: int
    chunk_count: int
    embedded_chunk_count: int
    sync_jobs: dict[str, int] = {}
    embed_jobs: dict[str, int] = {}
    last_sweep_at: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None
