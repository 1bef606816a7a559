"""
System service: health checks and stats.
"""

import logging

from syncengine.api.models.system import HealthResponse, StatsResponse
from syncengine.config import Config
from syncengine.engine import Engine

logger = logging.getLogger(__name__)


class SystemService:
    """Handles system-level operations: health, stats."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_health(self) -> HealthResponse:
        status = self.engine.processor.get_status()
        return HealthResponse(
            status="ok",
            version="1.0.0",
            worker_running=status["running"],
            current_job_kind=status["current_job_kind"],
            current_job_id=status["current_job_id"],
            embedding_provider=Config.EMBEDDING_PROVIDER.lower(),
        )

    def get_stats(self) -> StatsResponse:
        stats = self.engine.database.get_stats()
        return StatsResponse(**stats)
