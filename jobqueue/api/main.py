"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobqueue import __version__
from jobqueue.api.routes import failed_router, health_router, jobs_router
from jobqueue.config import get_settings
from jobqueue.db import close_db, init_db
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import instrument_fastapi, setup_tracing
from jobqueue.queue import DatabaseFailedJobProvider, create_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates the queue store and dead-letter provider on startup and
    releases them on shutdown.
    """
    # Startup
    setup_logging("api")
    setup_metrics()
    setup_tracing()
    await init_db()

    app.state.store = create_store()
    app.state.failed_jobs = DatabaseFailedJobProvider()

    logger.info("Application started")

    yield

    # Shutdown
    await app.state.store.close()
    await close_db()
    logger.info("Application shutdown")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Queue API",
        description="Push jobs, inspect queues and manage failed jobs",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(failed_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
