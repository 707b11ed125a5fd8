"""SQLAlchemy ORM models for Ticketforge.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from ticketforge.database.models.base import Base, TimestampMixin
from ticketforge.database.models.ticket import TicketRow

__all__ = [
    "Base",
    "TimestampMixin",
    "TicketRow",
]
