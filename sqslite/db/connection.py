"""
Database connection management.
Handles the async SQLAlchemy engine over aiosqlite, pragmas, schema setup
and session scoping.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sqslite.config import get_settings
from sqslite.db.models import UPDATED_TRIGGER, Base
from sqslite.exceptions import SchemaSetupError

logger = logging.getLogger(__name__)

# Process-wide store, built from settings
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def to_database_url(location: str | Path) -> str:
    """
    Turn a filesystem path into an aiosqlite URL; URLs pass through.

    Args:
        location: Database URL or path to the database file.

    Returns:
        A SQLAlchemy database URL.
    """
    location = str(location)
    if "://" in location:
        return location
    return f"sqlite+aiosqlite:///{location}"


def _install_pragmas(engine: AsyncEngine, cache_size: int) -> None:
    """
    Configure every new DBAPI connection and make transactions IMMEDIATE.

    The driver's own BEGIN handling is disabled so that each transaction
    takes the write lock up front and writers serialize across connections.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA temp_store = MEMORY")
        cursor.execute(f"PRAGMA cache_size = {int(cache_size)}")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def open_store(
    database_url: str | Path | None = None,
    *,
    cache_size: int | None = None,
    busy_timeout: float | None = None,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async engine for a queue database.

    Args:
        database_url: Database URL or file path. Defaults to settings.
        cache_size: SQLite page cache size applied to every connection.
        busy_timeout: Seconds a writer waits for the lock before failing.
        echo: Log emitted SQL.

    Returns:
        AsyncEngine: The configured engine.
    """
    settings = get_settings()
    url = to_database_url(database_url or settings.database_url)
    if cache_size is None:
        cache_size = settings.cache_size
    if busy_timeout is None:
        busy_timeout = settings.busy_timeout_seconds

    engine = create_async_engine(
        url,
        connect_args={"timeout": busy_timeout},
        echo=echo,
    )
    _install_pragmas(engine, cache_size)

    logger.debug(
        "Opened queue store",
        extra={"database_url": url, "cache_size": cache_size},
    )
    return engine


async def setup(engine: AsyncEngine) -> None:
    """
    Create the message table, index and trigger if they do not exist.

    Safe to call on every startup.

    Raises:
        SchemaSetupError: If the pragmas or DDL cannot be applied.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text(UPDATED_TRIGGER))
    except SQLAlchemyError as e:
        logger.error(
            "Failed to set up queue schema",
            extra={"database_url": str(engine.url), "error": str(e)},
        )
        raise SchemaSetupError(f"Failed to set up queue schema: {e}") from e

    logger.info("Queue schema ready", extra={"database_url": str(engine.url)})


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to a queue store."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """
    Yield a session that commits on success and rolls back on error.

    Each scope is one short transaction, so a claim made inside it is
    visible to other connections as soon as the block exits.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_engine() -> AsyncEngine:
    """
    Get or create the process-wide engine from settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = open_store(echo=settings.log_level == "DEBUG")
    return _engine


async def init_db() -> AsyncEngine:
    """
    Initialize the process-wide store and session factory.
    Should be called on process startup.
    """
    global AsyncSessionLocal
    engine = get_engine()
    await setup(engine)
    AsyncSessionLocal = create_session_factory(engine)
    logger.info("Database connection initialized")
    return engine


async def close_db() -> None:
    """
    Dispose the process-wide store.
    Should be called on process shutdown.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None
        logger.info("Database connection closed")


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Context manager for sessions on the process-wide store.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with session_scope(AsyncSessionLocal) as session:
        yield session
