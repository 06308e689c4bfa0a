"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from swapmylook.api.routes import generate, webhooks
from swapmylook.core import timezone  # noqa: F401
from swapmylook.core.config import Settings, configure_logging
from swapmylook.core.database import setup_db_session
from swapmylook.services.storage.s3_client import create_object_storage
from swapmylook.uow import create_uow_factory
from swapmylook.workers.generation_worker import run_generation_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, session_factory, settings, storage, worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_generation_worker)
        session_factory: Database session factory
        settings: Application settings
        storage: Object storage client
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(session_factory, settings, storage))
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(session_factory, settings, storage))
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: configure logging, database session factory, object storage, worker
    - Shutdown: stop the worker

    The in-process worker restarts automatically on failure. Set
    RUN_WORKER_IN_APP=false when workers run as separate processes.
    """
    settings = Settings()  # type: ignore[call-arg]

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    storage = create_object_storage(settings)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.storage = storage

    shutdown_event = asyncio.Event()
    worker_task = None
    if settings.run_worker_in_app:
        worker_task = create_resilient_worker(
            run_generation_worker, session_factory, settings, storage, "generation", shutdown_event
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        generation_mode=settings.generation_mode,
        worker_in_app=settings.run_worker_in_app,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if worker_task is not None:
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="SwapMyLook Backend API",
        description="Virtual try-on generation jobs and provider webhooks",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generate.router)  # Generate router has prefix="/generate" in definition
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Log full detail; only expose it outside production."""
        logger.error(
            "request.unhandled_error",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        detail = "Internal server error"
        if settings.app_env != "production":
            detail = f"{type(exc).__name__}: {exc}"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": detail}
        )

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test and queue stats.

        Returns:
            200: {"status": "healthy", "queue": {...}} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            async with await app.state.uow_factory() as uow:
                stats = await uow.work_queue.stats()

            logger.debug("health_check.success")
            return {
                "status": "healthy",
                "queue": {"depth": stats.depth, "leased": stats.leased, "delayed": stats.delayed},
            }

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            error = {"type": type(e).__name__}
            if settings.app_env != "production":
                error["message"] = str(e)
            return {"status": "unhealthy", "error": error}

    return app


# Create app instance for uvicorn
app = create_app()
