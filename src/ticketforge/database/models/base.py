"""SQLAlchemy declarative base and common column mixins for Ticketforge.

Timestamps are assigned on the Python side so that SQLite and PostgreSQL
produce the same timezone-aware values.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base for all Ticketforge models."""

    pass


class TimestampMixin:
    """Mixin providing created_at and updated_at columns.

    Attributes:
        created_at: Set once when the row is inserted.
        updated_at: Set on insert and refreshed on each ORM update. Core
            ``UPDATE`` statements must set it explicitly.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
