"""Ticket store interface and shared ticket types.

Tickets are owned by a store; the scheduler and the agent routers read and
write them only through the :class:`TicketStore` interface defined here.
Two implementations ship with the package: an in-memory store and a
SQLAlchemy-backed store.

Every store bumps ``version`` on each successful update and offers
:meth:`TicketStore.compare_and_swap`, a version-checked update that is the
only concurrency primitive the scheduler relies on.
"""

from __future__ import annotations

import abc
import enum
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, Field

from ticketforge.events import Disposable


class TicketStatus(str, enum.Enum):
    """Lifecycle states of a ticket.

    States:
        open: Ready to be worked on.
        in_progress: Picked by a consumer and being worked on.
        pending: Waiting for human approval (manual mode).
        blocked: Needs attention before work can continue.
        done: Work completed.
        removed: Soft-deleted.
    """

    open = "open"
    in_progress = "in-progress"
    pending = "pending"
    blocked = "blocked"
    done = "done"
    removed = "removed"


class TicketType(str, enum.Enum):
    """Routing classification of a ticket."""

    ai_to_human = "ai_to_human"
    human_to_ai = "human_to_ai"
    answer_agent = "answer_agent"


# Statuses the scheduler keeps in its queue
WORKABLE_STATUSES: frozenset[TicketStatus] = frozenset(
    {TicketStatus.open, TicketStatus.in_progress}
)

UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {"title", "status", "type", "description", "priority", "creator", "assignee"}
)


class Ticket(BaseModel):
    """Snapshot of a persisted ticket.

    Attributes:
        id: Unique ticket identifier (e.g. ``TICKET-1717000000000-a1b2c3``).
        title: Short human-readable summary.
        status: Current lifecycle state.
        type: Optional routing classification.
        description: Optional long description.
        priority: Numeric priority (lower = more urgent).
        creator: Who created the ticket.
        assignee: Agent or person the ticket is assigned to.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
        version: Optimistic-concurrency counter, bumped on every update.
    """

    id: str
    title: str
    status: TicketStatus
    type: TicketType | None = None
    description: str | None = None
    priority: int = 2
    creator: str = "system"
    assignee: str | None = "Clarity Agent"
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @property
    def is_workable(self) -> bool:
        return self.status in WORKABLE_STATUSES


class TicketCreate(BaseModel):
    """Fields accepted when creating a ticket."""

    title: str = Field(min_length=1)
    status: TicketStatus = TicketStatus.open
    type: TicketType | None = None
    description: str | None = None
    priority: int = 2
    creator: str = "system"
    assignee: str | None = "Clarity Agent"


class TicketStoreError(Exception):
    """Raised when a store operation fails for I/O or backend reasons.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class ConcurrencyConflictError(TicketStoreError):
    """Raised when a compare-and-swap finds a different version than expected.

    Attributes:
        ticket_id: The ticket that was being updated.
        expected_version: Version the caller based its update on.
        actual_version: Version currently stored.
    """

    def __init__(self, ticket_id: str, expected_version: int, actual_version: int) -> None:
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on ticket {ticket_id}: "
            f"expected {expected_version}, found {actual_version}",
            operation="compare_and_swap",
        )


def validate_update_fields(fields: dict[str, Any]) -> None:
    """Reject updates naming fields the store does not allow to change.

    Raises:
        ValueError: If any field is unknown or immutable.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update ticket fields: {sorted(unknown)}")


class TicketStore(abc.ABC):
    """Abstract ticket persistence interface.

    Implementations must fire :meth:`on_change` listeners after every
    successful create or update, and must raise :class:`TicketStoreError`
    (never backend-specific exceptions) for operational failures.
    """

    @abc.abstractmethod
    async def list_tickets(
        self,
        status: TicketStatus | None = None,
        ticket_type: TicketType | None = None,
    ) -> list[Ticket]:
        """List tickets in creation order, oldest first."""

    @abc.abstractmethod
    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        """Return one ticket, or None if it does not exist."""

    @abc.abstractmethod
    async def create_ticket(self, data: TicketCreate) -> Ticket:
        """Persist a new ticket with version 1."""

    @abc.abstractmethod
    async def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket | None:
        """Apply a partial update unconditionally.

        Returns:
            The updated ticket, or None if the ticket does not exist.
        """

    @abc.abstractmethod
    async def compare_and_swap(
        self, ticket_id: str, expected_version: int, **fields: Any
    ) -> Ticket | None:
        """Apply a partial update only if the stored version matches.

        Returns:
            The updated ticket, or None if the ticket does not exist.

        Raises:
            ConcurrencyConflictError: If the stored version differs.
        """

    @abc.abstractmethod
    def on_change(self, listener: Callable[[], None]) -> Disposable:
        """Subscribe to payload-less change notifications."""
