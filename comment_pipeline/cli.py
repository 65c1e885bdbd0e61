"""Command-line interface for running and administering the comment pipeline."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from sqlalchemy.exc import SQLAlchemyError
from typing_extensions import Annotated

from comment_pipeline.bus.worker import build_processor_worker
from comment_pipeline.config.settings import settings
from comment_pipeline.models import Base
from comment_pipeline.monitoring.metrics import PrometheusExporter
from comment_pipeline.utils.db_session import get_async_engine
from comment_pipeline.utils.logging_utils import setup_logging

app = typer.Typer(help="Comment Pipeline Commands")
logger = logging.getLogger(__name__)


async def _create_schema() -> None:
    engine = get_async_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()


@app.command("init-db")
def init_db(
    log_config: Annotated[Optional[Path], typer.Option("--log-config", help="Path to logging YAML")] = None,
) -> None:
    """Create the pipeline tables directly from the ORM metadata (development and tests).

    Production databases are managed with ``alembic upgrade head``.
    """
    setup_logging(log_config)
    logger.info("Creating tables from ORM metadata")
    try:
        asyncio.run(_create_schema())
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Failed to create tables: {e}")
        sys.exit(1)
    logger.info("✓ Tables created")


@app.command("worker")
def run_worker(
    metrics_port: Annotated[Optional[int], typer.Option("--metrics-port", help="Port for Prometheus metrics")] = None,
    log_config: Annotated[Optional[Path], typer.Option("--log-config", help="Path to logging YAML")] = None,
) -> None:
    """Run the durable processor's subscription worker as a standalone process."""
    setup_logging(log_config)
    PrometheusExporter(port=metrics_port or settings.METRICS_PORT).start_server()

    worker = build_processor_worker()
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")


@app.command("serve")
def serve(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="Bind port")] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Serve the edge capture API with uvicorn."""
    uvicorn.run(
        "comment_pipeline.api.main:app",
        host=host or settings.API_HOST,
        port=port or settings.API_PORT,
        reload=reload,
        log_config=None,
    )


if __name__ == "__main__":
    app()
