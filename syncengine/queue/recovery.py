"""
Startup recovery for jobs orphaned by an unclean shutdown.
"""

import logging
from typing import Optional

from syncengine.db import Database
from syncengine.notifier import JobKind, JobProgressEvent, Notifier

logger = logging.getLogger(__name__)

RECOVERY_ERROR = "Recovered after service restart: job was interrupted"


async def recover_stuck_jobs(database: Database, notifier: Optional[Notifier] = None) -> int:
    """
    Fail every job that was mid-flight when the previous process died.

    Must run before the worker starts, while no job of this process is
    running. Jobs are marked FAILED rather than re-queued so a job that
    crashes the worker cannot loop forever.

    Returns:
        Number of jobs recovered.
    """
    sync_jobs, embed_jobs = database.fail_orphaned_jobs(RECOVERY_ERROR)
    recovered = len(sync_jobs) + len(embed_jobs)

    if recovered == 0:
        logger.info("No interrupted jobs to recover")
        return 0

    for job in sync_jobs:
        logger.warning(f"Recovered sync job {job.id} (repo {job.repo_id}) from {job.status.value}")
    for job in embed_jobs:
        logger.warning(f"Recovered embed job {job.id} (repo {job.repo_id}) from {job.status.value}")

    if notifier is not None:
        for job in sync_jobs:
            await notifier.failed(JobProgressEvent(
                kind=JobKind.SYNC,
                job_id=job.id,
                repo_id=job.repo_id,
                status="FAILED",
                processed=job.processed_files,
                total=job.total_files or 0,
                skipped=job.skipped_files,
                failed=job.failed_files,
                error=RECOVERY_ERROR,
            ))
        for job in embed_jobs:
            await notifier.failed(JobProgressEvent(
                kind=JobKind.EMBED,
                job_id=job.id,
                repo_id=job.repo_id,
                status="FAILED",
                processed=job.processed_files,
                total=job.total_files or 0,
                chunks_created=job.chunks_created,
                embeddings_generated=job.embeddings_generated,
                failed=job.failed_files,
                error=RECOVERY_ERROR,
            ))

    logger.info(f"Recovered {recovered} interrupted jobs")
    return recovered
