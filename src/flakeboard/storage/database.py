"""Engine and session management for the SQL repositories."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.ext.asyncio import (
    create_async_engine as _create_async_engine,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

from flakeboard.config import Settings

ASYNC_DRIVER = "postgresql+asyncpg"
# Schemes found in Supabase and Heroku style connection strings
SYNC_DRIVERS = frozenset({"postgres", "postgresql", "postgresql+psycopg2", "postgresql+psycopg"})


def to_asyncpg_url(database_url: str) -> str:
    """
    Rewrite a PostgreSQL connection string for the asyncpg driver.

    ``postgres://`` and sync driver schemes become ``postgresql+asyncpg://``.
    libpq's ``sslmode`` query parameter becomes asyncpg's ``ssl``.

    Raises:
        ValueError: If the URL is not a PostgreSQL URL.
    """
    url = make_url(database_url)
    if url.drivername in SYNC_DRIVERS:
        url = url.set(drivername=ASYNC_DRIVER)
    elif url.drivername != ASYNC_DRIVER:
        raise ValueError(f"Unsupported database driver: {url.drivername}")

    if "sslmode" in url.query:
        query = dict(url.query)
        query["ssl"] = query.pop("sslmode")
        url = url.set(query=query)
    return url.render_as_string(hide_password=False)


def create_async_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        database_url: PostgreSQL connection URL in any scheme accepted by
            :func:`to_asyncpg_url`.
        echo: Whether to log SQL statements.

    Returns:
        AsyncEngine instance.
    """
    return _create_async_engine(
        to_asyncpg_url(database_url),
        echo=echo,
        pool_pre_ping=True,
    )


def get_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session maker whose rows stay readable after each stage commits."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Set by init_db()
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def init_db(settings: Settings) -> None:
    """
    Initialize database engine and session maker.

    Raises:
        RuntimeError: If no database URL is configured.
    """
    global _engine, _session_maker
    if not settings.database_url:
        raise RuntimeError("FLAKEBOARD_DATABASE_URL is not configured")
    _engine = create_async_engine(settings.database_url, echo=settings.debug)
    _session_maker = get_session_maker(_engine)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session for one upload.

    Repositories commit after each persistence stage themselves, so the
    session is only rolled back here if an error escapes mid-stage.
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
