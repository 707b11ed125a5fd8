"""Ticket model for Ticketforge.

Defines the ``tickets`` table. Status and type are stored as their string
values (``"in-progress"`` rather than ``"in_progress"``) so the table stays
readable by other tools sharing the same database.
"""

from __future__ import annotations

from sqlalchemy import Enum, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from ticketforge.database.models.base import Base, TimestampMixin
from ticketforge.store.base import Ticket, TicketStatus, TicketType


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class TicketRow(TimestampMixin, Base):
    """A persisted ticket.

    Attributes:
        id: Text primary key (``TICKET-<ms>-<suffix>``).
        title: Short description of the ticket.
        status: Current lifecycle state.
        type: Optional routing classification.
        description: Detailed description, notes appended by agents.
        priority: Numeric priority (lower = more urgent).
        creator: Who created the ticket.
        assignee: Agent or person the ticket is assigned to.
        version: Optimistic-concurrency counter, bumped on every update.
        created_at: Row creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_status", "status"),
        Index("ix_tickets_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        Enum(
            TicketStatus,
            name="ticket_status",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        default=TicketStatus.open,
        nullable=False,
    )
    type: Mapped[TicketType | None] = mapped_column(
        Enum(
            TicketType,
            name="ticket_type",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    creator: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    assignee: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def to_ticket(self) -> Ticket:
        """Convert the row into a detached :class:`Ticket` snapshot."""
        return Ticket.model_validate(self, from_attributes=True)
