"""Database health check utilities for startup scripts."""

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from comment_pipeline.utils.db_session import get_async_engine

logger = logging.getLogger(__name__)


async def test_db_connection() -> bool:
    """
    Test database connection for startup health checks.

    Returns:
        bool: True if connection successful, False otherwise.
    """
    try:
        engine = get_async_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return False
