"""
FastAPI application for the comment pipeline.

Serves the edge capture endpoint and, unless disabled, runs the durable
processor's subscription worker as a background task for the lifetime of the
application.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from prometheus_client import make_asgi_app

from comment_pipeline.api.endpoints import capture, items
from comment_pipeline.bus.worker import build_processor_worker
from comment_pipeline.config.settings import settings
from comment_pipeline.utils.db_health import test_db_connection
from comment_pipeline.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown events.

    Starts the processor's subscription worker on startup when
    ``RUN_PROCESSOR_IN_API`` is set and cancels it on shutdown.
    """
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    worker_task: Optional[asyncio.Task] = None
    if settings.RUN_PROCESSOR_IN_API:
        worker = build_processor_worker()
        worker_task = asyncio.create_task(worker.run_forever())
        logger.info(f"Processor worker started for subscriber '{settings.PROCESSOR_SUBSCRIBER}'")
    else:
        logger.info("Processor worker disabled in this process (RUN_PROCESSOR_IN_API=false)")
    app.state.worker_task = worker_task

    yield

    logger.info("Shutting down application")
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            logger.info("Processor worker cancelled successfully")
        except Exception as e:
            logger.error(f"Processor worker ended with an error: {e}", exc_info=True)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""Comment ingestion service.

        The capture endpoint acknowledges submissions as soon as they are on the
        message bus; persistence happens asynchronously and idempotently.""",
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_tags=[
            {"name": "capture", "description": "Edge capture of submissions"},
            {"name": "items", "description": "Administrative access to stored items"},
            {"name": "health", "description": "Health check and monitoring"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.DEBUG else ["*"],
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS if not settings.DEBUG else ["*"],
    )

    app.include_router(capture.router, prefix=settings.CAPTURE_PATH, tags=["capture"])
    if settings.ADMIN_API_ENABLED:
        app.include_router(items.router, prefix="/api/v1/items", tags=["items"])

    app.mount("/metrics", make_asgi_app())

    @app.get("/health", tags=["health"], summary="Health Check")
    async def health_check():
        """
        Health check endpoint.

        Returns:
            dict: Service status, version, database reachability and whether
                the processor worker is running in this process.
        """
        worker_task = getattr(app.state, "worker_task", None)
        worker_running = bool(worker_task and not worker_task.done())
        worker_expected = worker_task is not None
        return {
            "status": "degraded" if worker_expected and not worker_running else "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": "reachable" if await test_db_connection() else "unreachable",
            "processor_worker": "running" if worker_running else "stopped",
        }

    return app


# Create the application instance
app = create_app()
