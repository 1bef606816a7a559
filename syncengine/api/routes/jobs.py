"""
Job routes: /repos/{id}/sync, /repos/{id}/embed, /jobs, /jobs/sync/{id}, /jobs/embed/{id}
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from syncengine.api.dependencies import get_job_service
from syncengine.api.models.jobs import (
    EmbedJobRequest,
    EmbedJobResponse,
    JobCreatedResponse,
    JobListResponse,
    SyncJobRequest,
    SyncJobResponse,
)
from syncengine.errors import RepoNotFoundError
from syncengine.services.job_service import JobService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Jobs"])


@router.post("/repos/{repo_id}/sync", response_model=JobCreatedResponse, status_code=202)
async def queue_sync(
    repo_id: int,
    request: Optional[SyncJobRequest] = None,
    service: JobService = Depends(get_job_service),
):
    """
    Queue a sync for a repository.

    If the repository already has an active sync job, that job is returned
    with ``created=false`` and nothing new is queued.
    """
    try:
        return service.queue_sync(repo_id, request)
    except RepoNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error("Queue sync error: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to queue sync: {e}")


@router.post("/repos/{repo_id}/embed", response_model=JobCreatedResponse, status_code=202)
async def queue_embed(
    repo_id: int,
    request: Optional[EmbedJobRequest] = None,
    service: JobService = Depends(get_job_service),
):
    """
    Queue a chunk/embed run for a repository.
    """
    try:
        return service.queue_embed(repo_id, request)
    except RepoNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("Queue embed error: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to queue embed: {e}")


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by job status"),
    repo_id: Optional[int] = Query(None, description="Filter by repository"),
    limit: int = Query(20, ge=1, le=200),
    service: JobService = Depends(get_job_service),
):
    """List recent sync and embed jobs, newest first."""
    try:
        return service.list_jobs(status=status, repo_id=repo_id, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/jobs/sync/{job_id}", response_model=SyncJobResponse)
async def get_sync_job(job_id: int, service: JobService = Depends(get_job_service)):
    """Status and counters of a sync job."""
    job = service.get_sync_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Sync job not found: {job_id}")
    return job


@router.get("/jobs/embed/{job_id}", response_model=EmbedJobResponse)
async def get_embed_job(job_id: int, service: JobService = Depends(get_job_service)):
    """Status and counters of an embed job."""
    job = service.get_embed_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Embed job not found: {job_id}")
    return job
