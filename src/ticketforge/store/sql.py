"""SQLAlchemy-backed ticket store.

Each operation opens its own session from the factory, so the store is
safe to share between the scheduler, the watchdog and the agent routers.
Backend exceptions are wrapped in :class:`TicketStoreError`.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketforge.database.queries import ticket as ticket_queries
from ticketforge.events import ChangeNotifier, Disposable
from ticketforge.store.base import (
    Ticket,
    TicketCreate,
    TicketStatus,
    TicketStore,
    TicketStoreError,
    TicketType,
    validate_update_fields,
)
from ticketforge.store.memory import generate_ticket_id

logger = structlog.get_logger(__name__)


class SqlTicketStore(TicketStore):
    """Ticket store persisting to a relational database.

    Args:
        session_factory: Factory producing AsyncSession instances, usually
            from :func:`ticketforge.database.get_session_factory`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._changes = ChangeNotifier("tickets")
        self._logger = logger.bind(component="SqlTicketStore")

    async def list_tickets(
        self,
        status: TicketStatus | None = None,
        ticket_type: TicketType | None = None,
    ) -> list[Ticket]:
        try:
            async with self._session_factory() as session:
                rows = await ticket_queries.list_tickets(
                    session, status_filter=status, type_filter=ticket_type
                )
                return [row.to_ticket() for row in rows]
        except SQLAlchemyError as e:
            raise self._wrap("list_tickets", e) from e

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        try:
            async with self._session_factory() as session:
                row = await ticket_queries.get_ticket(session, ticket_id)
                return row.to_ticket() if row is not None else None
        except SQLAlchemyError as e:
            raise self._wrap("get_ticket", e) from e

    async def create_ticket(self, data: TicketCreate) -> Ticket:
        try:
            async with self._session_factory() as session:
                row = await ticket_queries.create_ticket(
                    session,
                    ticket_id=generate_ticket_id(),
                    title=data.title,
                    status=data.status,
                    ticket_type=data.type,
                    description=data.description,
                    priority=data.priority,
                    creator=data.creator,
                    assignee=data.assignee,
                )
                ticket = row.to_ticket()
        except SQLAlchemyError as e:
            raise self._wrap("create_ticket", e) from e

        self._changes.notify()
        return ticket

    async def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket | None:
        validate_update_fields(fields)
        try:
            async with self._session_factory() as session:
                row = await ticket_queries.update_ticket(session, ticket_id, fields)
                ticket = row.to_ticket() if row is not None else None
        except SQLAlchemyError as e:
            raise self._wrap("update_ticket", e) from e

        if ticket is not None:
            self._changes.notify()
        return ticket

    async def compare_and_swap(
        self, ticket_id: str, expected_version: int, **fields: Any
    ) -> Ticket | None:
        validate_update_fields(fields)
        try:
            async with self._session_factory() as session:
                row = await ticket_queries.compare_and_swap_ticket(
                    session, ticket_id, expected_version, fields
                )
                ticket = row.to_ticket() if row is not None else None
        except SQLAlchemyError as e:
            raise self._wrap("compare_and_swap", e) from e

        if ticket is not None:
            self._changes.notify()
        return ticket

    def on_change(self, listener: Callable[[], None]) -> Disposable:
        return self._changes.subscribe(listener)

    def _wrap(self, operation: str, error: SQLAlchemyError) -> TicketStoreError:
        self._logger.error(
            "ticket_store_operation_failed",
            operation=operation,
            error=str(error),
        )
        return TicketStoreError(f"{operation} failed: {error}", operation=operation)
