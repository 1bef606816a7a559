"""
Route modules for the sync engine API.

Each module defines a FastAPI APIRouter for a specific domain.
All routers are collected in ``all_routers`` for easy inclusion.
"""

from syncengine.api.routes.system import router as system_router
from syncengine.api.routes.jobs import router as jobs_router

all_routers = [
    system_router,
    jobs_router,
]

__all__ = ["all_routers"]
