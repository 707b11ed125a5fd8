"""Database layer for Ticketforge.

This module handles database connections, session management, and the
SQLAlchemy async engine configuration for the ticket table.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    create_schema: Create all tables on an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from ticketforge.database.connection import create_schema, get_engine, get_session_factory
from ticketforge.database.models import Base, TicketRow, TimestampMixin

__all__ = [
    "get_engine",
    "get_session_factory",
    "create_schema",
    "Base",
    "TimestampMixin",
    "TicketRow",
]
