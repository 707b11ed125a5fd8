"""Database connection management for Ticketforge.

This module provides factory functions for creating SQLAlchemy async engines
and session factories, configured from the application's DatabaseConfig.

The default configuration uses a SQLite file through aiosqlite; any
SQLAlchemy async URL works.

Example usage:
    >>> from ticketforge.config import DatabaseConfig
    >>> from ticketforge.database.connection import get_engine, get_session_factory
    >>>
    >>> engine = get_engine(DatabaseConfig())
    >>> await create_schema(engine)
    >>> SessionFactory = get_session_factory(engine)
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ticketforge.config import DatabaseConfig
from ticketforge.database.models.base import Base


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    For file-based SQLite URLs the parent directory is created first, since
    SQLite will not create it.

    Args:
        config: Database configuration containing URL and SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    url = make_url(config.url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(config.url, echo=config.echo)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    The returned factory produces AsyncSession instances configured with
    expire_on_commit=False to allow accessing attributes after commit
    without triggering lazy loads.

    Args:
        engine: AsyncEngine to bind sessions to.

    Returns:
        Configured async_sessionmaker that produces AsyncSession instances.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet.

    Intended for local development databases and tests; deployments that
    share a database should run the Alembic migrations instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
