"""Ticket CRUD query functions for Ticketforge.

Provides async functions for creating, reading and updating ticket rows,
including the version-checked update used for atomic task pick-up.

Every write commits its own transaction. Reads use ``populate_existing``
so rows already in the session's identity map are refreshed from the
database instead of returning stale attributes after a core ``UPDATE``.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketforge.database.models.base import utcnow
from ticketforge.database.models.ticket import TicketRow
from ticketforge.store.base import ConcurrencyConflictError, TicketStatus, TicketType

logger = structlog.get_logger(__name__)


async def create_ticket(
    session: AsyncSession,
    ticket_id: str,
    title: str,
    status: TicketStatus = TicketStatus.open,
    ticket_type: TicketType | None = None,
    description: str | None = None,
    priority: int = 2,
    creator: str = "system",
    assignee: str | None = "Clarity Agent",
) -> TicketRow:
    """Create a new ticket row with version 1.

    Args:
        session: Active async database session.
        ticket_id: Unique identifier for the new ticket.
        title: Short ticket summary.
        status: Initial lifecycle status.
        ticket_type: Optional routing classification.
        description: Optional long description.
        priority: Numeric priority (lower = more urgent).
        creator: Who created the ticket.
        assignee: Agent or person the ticket is assigned to.

    Returns:
        The newly created TicketRow instance.
    """
    row = TicketRow(
        id=ticket_id,
        title=title,
        status=status,
        type=ticket_type,
        description=description,
        priority=priority,
        creator=creator,
        assignee=assignee,
        version=1,
    )

    session.add(row)
    await session.commit()
    await session.refresh(row)

    logger.info(
        "ticket_created",
        ticket_id=row.id,
        title=title,
        status=row.status.value,
    )

    return row


async def get_ticket(
    session: AsyncSession,
    ticket_id: str,
) -> TicketRow | None:
    """Retrieve a ticket by ID.

    Args:
        session: Active async database session.
        ticket_id: ID of the ticket to retrieve.

    Returns:
        The TicketRow if found, None otherwise.
    """
    stmt = (
        select(TicketRow)
        .where(TicketRow.id == ticket_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_tickets(
    session: AsyncSession,
    status_filter: TicketStatus | None = None,
    type_filter: TicketType | None = None,
) -> list[TicketRow]:
    """List tickets oldest first with optional filters.

    Args:
        session: Active async database session.
        status_filter: Optional status to filter by.
        type_filter: Optional ticket type to filter by.

    Returns:
        List of matching TicketRow instances in creation order.
    """
    stmt = select(TicketRow).execution_options(populate_existing=True)

    if status_filter is not None:
        stmt = stmt.where(TicketRow.status == status_filter)

    if type_filter is not None:
        stmt = stmt.where(TicketRow.type == type_filter)

    stmt = stmt.order_by(TicketRow.created_at.asc(), TicketRow.id.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_ticket(
    session: AsyncSession,
    ticket_id: str,
    updates: dict[str, Any],
) -> TicketRow | None:
    """Apply a partial update and bump the ticket version.

    Args:
        session: Active async database session.
        ticket_id: ID of the ticket to update.
        updates: Column values to set.

    Returns:
        The updated TicketRow, or None if the ticket does not exist.
    """
    stmt = (
        update(TicketRow)
        .where(TicketRow.id == ticket_id)
        .values(**updates, version=TicketRow.version + 1, updated_at=utcnow())
    )
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        logger.warning("ticket_not_found_for_update", ticket_id=ticket_id)
        return None

    row = await get_ticket(session, ticket_id)

    logger.info(
        "ticket_updated",
        ticket_id=ticket_id,
        version=row.version if row else None,
        fields=sorted(updates),
    )

    return row


async def compare_and_swap_ticket(
    session: AsyncSession,
    ticket_id: str,
    expected_version: int,
    updates: dict[str, Any],
) -> TicketRow | None:
    """Apply a partial update only if the stored version matches.

    The check and the write are a single ``UPDATE ... WHERE version = ?``
    statement, so two callers racing on the same version cannot both win.

    Args:
        session: Active async database session.
        ticket_id: ID of the ticket to update.
        expected_version: Version the caller last observed.
        updates: Column values to set.

    Returns:
        The updated TicketRow, or None if the ticket does not exist.

    Raises:
        ConcurrencyConflictError: If the ticket exists with another version.
    """
    stmt = (
        update(TicketRow)
        .where(TicketRow.id == ticket_id, TicketRow.version == expected_version)
        .values(**updates, version=TicketRow.version + 1, updated_at=utcnow())
    )
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        current = await get_ticket(session, ticket_id)
        if current is None:
            return None
        raise ConcurrencyConflictError(ticket_id, expected_version, current.version)

    row = await get_ticket(session, ticket_id)

    logger.info(
        "ticket_swapped",
        ticket_id=ticket_id,
        from_version=expected_version,
        to_version=row.version if row else None,
        fields=sorted(updates),
    )

    return row
