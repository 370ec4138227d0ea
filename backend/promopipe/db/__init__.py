"""
Database module for promopipe.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging

from promopipe.db.engine import async_session, engine, get_session, shutdown
from promopipe.db.models import Base, PipelineRun, Project, ScreenRecording, User

logger = logging.getLogger(__name__)


async def init_database():
    """Initialize database schema on first run."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


__all__ = [
    "Base",
    "engine",
    "async_session",
    "get_session",
    "shutdown",
    "init_database",
    "PipelineRun",
    "Project",
    "ScreenRecording",
    "User",
]
