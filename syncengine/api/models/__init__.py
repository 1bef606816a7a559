"""
Pydantic models (schemas) for API request/response types.

All models are re-exported here for convenience:
    from syncengine.api.models import SyncJobResponse, HealthResponse, ...
"""

from syncengine.api.models.system import (
    HealthResponse,
    StatsResponse,
    ErrorResponse,
)
from syncengine.api.models.jobs import (
    SyncJobRequest,
    EmbedJobRequest,
    JobCreatedResponse,
    SyncJobResponse,
    EmbedJobResponse,
    JobListResponse,
)

__all__ = [
    # System
    "HealthResponse",
    "StatsResponse",
    "ErrorResponse",
    # Jobs
    "SyncJobRequest",
    "EmbedJobRequest",
    "JobCreatedResponse",
    "SyncJobResponse",
    "EmbedJobResponse",
    "JobListResponse",
]
