"""
Database engine configuration for promopipe.

Provides async SQLAlchemy engine with SQLite WAL mode,
crash-safe PRAGMA configuration, and session management.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from promopipe.config import settings


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    """
    Configure SQLite PRAGMA settings for crash safety.

    - WAL mode: concurrent readers while a checkpoint write is in progress
    - FULL synchronous: durable checkpoints
    - Foreign keys: enforce run/recording -> project references
    - Busy timeout: wait up to 5s for locks
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


engine = create_async_engine(
    settings.storage.database_url,
    echo=False,
)

# Must be registered on sync_engine for aiosqlite
if engine.dialect.name == "sqlite":
    event.listens_for(engine.sync_engine, "connect")(configure_sqlite_pragmas)

# expire_on_commit=False keeps loaded attributes usable after commit
async_session = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_session():
    """
    Dependency injection function for async sessions.

    Yields an async session and ensures proper cleanup.
    """
    async with async_session() as session:
        yield session


async def shutdown():
    """Dispose of engine and close all connections."""
    await engine.dispose()
