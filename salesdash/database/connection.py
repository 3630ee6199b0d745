"""
Row Store Connection Management

Async SQLAlchemy 2.0 engine behind the dashboard row store. PostgreSQL via
asyncpg in deployment; SQLite via aiosqlite for local runs and tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from salesdash.config import Settings, get_settings
from salesdash.database.repository import RowStore

logger = structlog.get_logger(__name__)

# Process-wide engine, opened by the API lifespan or a sync run
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an engine for the row store URL.

    An in-memory SQLite database lives on a single shared connection, so it
    gets a StaticPool; every other URL connects per checkout (asyncpg pools
    internally).
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=echo, pool_pre_ping=True, poolclass=NullPool)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Open the process-wide engine and ping the store.

    Args:
        url: Async database URL; defaults to ``DATABASE_URL`` or the
            ``POSTGRES_*`` settings

    Returns:
        AsyncEngine: The initialized database engine

    Raises:
        Exception: the store is unreachable; the engine is disposed first
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    engine = build_engine(url or settings.database.async_url, echo=settings.database.echo)

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Row store unreachable", dialect=engine.dialect.name, error=str(e))
        await engine.dispose()
        raise

    _engine = engine
    _async_session_factory = build_session_factory(engine)
    logger.info("Row store connected", dialect=engine.dialect.name, database=engine.url.database)
    return engine


async def close_database() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Row store connection closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _async_session_factory


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create the hourly, order and order line tables if they do not exist yet."""
    from salesdash.database.models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Dashboard tables ensured", tables=sorted(Base.metadata.tables))


@asynccontextmanager
async def open_row_store(settings: Settings, create_schema: bool = False) -> AsyncIterator[RowStore]:
    """
    Open the engine for one batch run and yield a configured ``RowStore``.

    Example:
        async with open_row_store(settings) as store:
            rows = await store.fetch_hourly_since(since)
    """
    engine = await init_database()
    try:
        if create_schema:
            await create_tables(engine)
        yield RowStore.from_settings(get_session_factory(), settings)
    finally:
        await close_database()
