"""Dict-backed ticket store.

Used when no database is configured and throughout the unit tests. Tickets
are kept in insertion order, which doubles as creation order.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

import structlog

from ticketforge.events import ChangeNotifier, Disposable
from ticketforge.store.base import (
    ConcurrencyConflictError,
    Ticket,
    TicketCreate,
    TicketStatus,
    TicketStore,
    TicketType,
    validate_update_fields,
)

logger = structlog.get_logger(__name__)


def generate_ticket_id() -> str:
    """Build a ticket id from the current time plus a random suffix.

    The suffix keeps ids unique when several tickets are created within the
    same millisecond.
    """
    return f"TICKET-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class InMemoryTicketStore(TicketStore):
    """Ticket store holding snapshots in a dict.

    Returned tickets are copies, so callers can never mutate stored state
    behind the store's back.
    """

    def __init__(self, tickets: Iterable[Ticket] = ()) -> None:
        self._tickets: dict[str, Ticket] = {}
        for ticket in tickets:
            self._tickets[ticket.id] = ticket.model_copy()
        self._changes = ChangeNotifier("tickets")
        self._logger = logger.bind(component="InMemoryTicketStore")

    async def list_tickets(
        self,
        status: TicketStatus | None = None,
        ticket_type: TicketType | None = None,
    ) -> list[Ticket]:
        tickets = list(self._tickets.values())
        if status is not None:
            tickets = [t for t in tickets if t.status == status]
        if ticket_type is not None:
            tickets = [t for t in tickets if t.type == ticket_type]
        return [t.model_copy() for t in tickets]

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return ticket.model_copy() if ticket is not None else None

    async def create_ticket(self, data: TicketCreate) -> Ticket:
        now = datetime.now(timezone.utc)
        ticket = Ticket(
            id=generate_ticket_id(),
            created_at=now,
            updated_at=now,
            version=1,
            **data.model_dump(),
        )
        self._tickets[ticket.id] = ticket

        self._logger.info("ticket_created", ticket_id=ticket.id, status=ticket.status.value)
        self._changes.notify()
        return ticket.model_copy()

    async def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket | None:
        validate_update_fields(fields)
        existing = self._tickets.get(ticket_id)
        if existing is None:
            self._logger.warning("ticket_not_found_for_update", ticket_id=ticket_id)
            return None
        return self._apply(existing, fields)

    async def compare_and_swap(
        self, ticket_id: str, expected_version: int, **fields: Any
    ) -> Ticket | None:
        validate_update_fields(fields)
        existing = self._tickets.get(ticket_id)
        if existing is None:
            return None
        if existing.version != expected_version:
            raise ConcurrencyConflictError(ticket_id, expected_version, existing.version)
        return self._apply(existing, fields)

    def on_change(self, listener: Callable[[], None]) -> Disposable:
        return self._changes.subscribe(listener)

    def _apply(self, existing: Ticket, fields: dict[str, Any]) -> Ticket:
        updated = existing.model_copy(
            update={
                **fields,
                "updated_at": datetime.now(timezone.utc),
                "version": existing.version + 1,
            }
        )
        # model_copy skips validation, so coerce enum fields explicitly
        updated = Ticket.model_validate(updated.model_dump())
        self._tickets[updated.id] = updated

        self._logger.info(
            "ticket_updated",
            ticket_id=updated.id,
            version=updated.version,
            fields=sorted(fields),
        )
        self._changes.notify()
        return updated.model_copy()
