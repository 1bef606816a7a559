"""
Repository Sync Engine - FastAPI Application
Runs the job queue worker and exposes job status over HTTP.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from syncengine.api.middleware import register_middleware
from syncengine.api.routes import all_routers
from syncengine.config import config
from syncengine.engine import Engine, build_engine

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


def create_app(engine: Optional[Engine] = None, start_workers: bool = True) -> FastAPI:
    """
    Build the API application.

    Args:
        engine: Pre-built engine; one is built from Config when omitted.
        start_workers: Run the queue processor and sync sweeper in the
            background for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.
        Handles startup and shutdown events.
        """
        # Startup
        logger.info("Starting sync engine...")

        try:
            config.validate()
            app.state.engine = engine or build_engine()
            app.state.engine.database.initialize()

            # Jobs left mid-flight by a previous process can never finish
            await app.state.engine.processor.recover_stuck_jobs()
        except ValueError as e:
            logger.error(f"Configuration error: {e}")
            raise
        except Exception as e:
            logger.error(f"Startup error: {e}")
            raise

        tasks = []
        if start_workers:
            tasks.append(asyncio.create_task(app.state.engine.processor.run()))
            tasks.append(asyncio.create_task(app.state.engine.sweeper.run()))

        logger.info("Sync engine started successfully")

        yield

        # Shutdown
        logger.info("Shutting down sync engine...")

        running_engine = app.state.engine
        running_engine.stop()
        if start_workers and not await running_engine.processor.wait_for_current_job(config.SHUTDOWN_TIMEOUT_SECONDS):
            logger.warning(
                f"Job {running_engine.processor.current_job} still running after "
                f"{config.SHUTDOWN_TIMEOUT_SECONDS}s, cancelling it"
            )
        # Both loops are idle or past their timeout here
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await running_engine.close()
        running_engine.database.close()

        logger.info("Sync engine stopped")

    app = FastAPI(
        title="Repository Sync Engine API",
        description="Mirrors GitHub repositories into SQLite and embeds their contents",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_middleware(app)

    for router in all_routers:
        app.include_router(router)

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    return app


app = create_app()


# Entry point for running with uvicorn directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "syncengine.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=False,
        log_level=config.LOG_LEVEL.lower()
    )
