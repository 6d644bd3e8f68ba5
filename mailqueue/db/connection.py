"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from mailqueue.config import Settings
from mailqueue.db.tables import Tables
from mailqueue.errors import MailQueueError

logger = logging.getLogger(__name__)

# Driver-level failures that mean "the backend is not reachable right now"
UNAVAILABLE_ERRORS: tuple[type[BaseException], ...] = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
    OSError,
    TimeoutError,
)

# Global engine instance
_engine: AsyncEngine | None = None


def get_engine(settings: Settings) -> AsyncEngine:
    """
    Get or create the async database engine.

    Args:
        settings: Application settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def get_test_engine(database_url: str) -> AsyncEngine:
    """
    Create a test database engine.

    In-memory SQLite needs a single shared connection, so a StaticPool is
    used there; other backends get a default pool.

    Args:
        database_url: The database URL for testing.

    Returns:
        AsyncEngine: The test SQLAlchemy async engine instance.
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_async_engine(database_url, echo=False)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create the session factory shared by all storage components.

    Args:
        engine: The async engine.

    Returns:
        async_sessionmaker: Factory producing AsyncSession objects.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(settings: Settings) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database connection and session factory.
    Should be called on process startup.
    """
    engine = get_engine(settings)
    session_factory = create_session_factory(engine)
    logger.info("Database connection initialized")
    return session_factory


async def create_schema(engine: AsyncEngine, tables: Tables) -> None:
    """
    Create missing tables.

    Production schemas are managed by Alembic; this is for development
    databases and tests.
    """
    async with engine.begin() as conn:
        await conn.run_sync(tables.metadata.create_all)


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on process shutdown.
    """
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection closed")


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
    unavailable: type[MailQueueError],
) -> AsyncGenerator[AsyncSession]:
    """
    Open a session that commits on success and rolls back on error.

    Every storage operation runs in its own short session so that each
    conditional write is committed on its own.

    Args:
        session_factory: The session factory.
        unavailable: Error raised when the backend cannot be reached.

    Yields:
        AsyncSession: An async database session.

    Raises:
        unavailable: On connection-level failures.
    """
    try:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except UNAVAILABLE_ERRORS as e:
        logger.warning("Database unavailable", extra={"error": str(e)})
        raise unavailable(str(e)) from e
