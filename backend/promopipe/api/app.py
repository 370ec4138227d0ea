"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from promopipe import configure_logging
from promopipe.config import settings
from promopipe.db import init_database, shutdown
from promopipe.errors import (
    AuthenticationRequired,
    InsufficientCreditsError,
    PipelineInputError,
    ProjectNotFoundError,
)
from promopipe.orchestrator.checkpoint import ProjectLocks
from promopipe.workers.jobs import JobRegistry
from promopipe.api.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Initialize database schema
        - Construct the per-process job registry and project lock registry

    Shutdown:
        - Cancel in-flight pipeline runs
        - Shut down the job registry
        - Close database connections
    """
    # Startup
    configure_logging()
    logger.info("Starting Promo Pipeline API...")
    await init_database()
    app.state.jobs = JobRegistry()
    app.state.project_locks = ProjectLocks()
    app.state.run_tasks = set()
    logger.info("API startup complete")

    yield

    # Shutdown
    logger.info("Shutting down Promo Pipeline API...")
    run_tasks = list(app.state.run_tasks)
    for task in run_tasks:
        task.cancel()
    if run_tasks:
        await asyncio.gather(*run_tasks, return_exceptions=True)
        logger.info(f"Cancelled {len(run_tasks)} in-flight run(s)")
    await app.state.jobs.shutdown()
    await shutdown()
    logger.info("API shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Promo Pipeline API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include router with all endpoints
app.include_router(router)


@app.exception_handler(PipelineInputError)
async def input_error_handler(request: Request, exc: PipelineInputError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(AuthenticationRequired)
async def auth_error_handler(request: Request, exc: AuthenticationRequired):
    return JSONResponse(status_code=401, content={"error": "Authentication required"})


@app.exception_handler(InsufficientCreditsError)
async def credits_error_handler(request: Request, exc: InsufficientCreditsError):
    return JSONResponse(
        status_code=402,
        content={
            "error": "Insufficient credits",
            "required": exc.required,
            "balance": exc.balance,
        },
    )


@app.exception_handler(ProjectNotFoundError)
async def not_found_handler(request: Request, exc: ProjectNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )
