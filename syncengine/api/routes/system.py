"""
System routes: /health, /stats
"""

from fastapi import APIRouter, Depends

from syncengine.api.dependencies import get_system_service
from syncengine.api.models.system import HealthResponse, StatsResponse
from syncengine.services.system_service import SystemService

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def health_check(service: SystemService = Depends(get_system_service)):
    """
    Health check endpoint.
    Reports whether the queue worker is running and which job it is on.
    """
    return service.get_health()


@router.get("/stats", response_model=StatsResponse)
async def get_stats(service: SystemService = Depends(get_system_service)):
    """
    Get database statistics.
    Returns repo, file and chunk counts plus job counts by status.
    """
    return service.get_stats()
