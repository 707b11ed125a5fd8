"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a throwaway SQLite file per
test. A file rather than ``:memory:`` is used so that the several sessions
opened by the SQL ticket store all see the same database.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncGenerator

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ticketforge.config import DatabaseConfig
from ticketforge.database.connection import create_schema, get_engine, get_session_factory
from ticketforge.store.sql import SqlTicketStore


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite async engine with the schema in place.

    Yields:
        Configured AsyncEngine instance using a temporary database file.
    """
    db_path = tmp_path / "data" / "tickets.db"
    test_engine = get_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{db_path}"))

    await create_schema(test_engine)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test.

    Yields:
        AsyncSession instance for the test.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def sql_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> SqlTicketStore:
    """Create a SQL ticket store over the test database."""
    return SqlTicketStore(session_factory)
