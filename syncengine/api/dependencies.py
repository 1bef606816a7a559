"""
Common API dependencies: access to the engine built in the app lifespan.
"""

from fastapi import HTTPException, Request

from syncengine.engine import Engine
from syncengine.services.job_service import JobService
from syncengine.services.system_service import SystemService


def get_engine(request: Request) -> Engine:
    """Raise 503 if the engine has not been started."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def get_job_service(request: Request) -> JobService:
    return JobService(get_engine(request))


def get_system_service(request: Request) -> SystemService:
    return SystemService(get_engine(request))
