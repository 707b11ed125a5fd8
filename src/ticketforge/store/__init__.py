"""Ticket stores for Ticketforge.

Exports the store interface, the shared ticket types and the in-memory
store. Import the database-backed store from :mod:`ticketforge.store.sql`.
"""

from ticketforge.store.base import (
    UPDATABLE_FIELDS,
    WORKABLE_STATUSES,
    ConcurrencyConflictError,
    Ticket,
    TicketCreate,
    TicketStatus,
    TicketStore,
    TicketStoreError,
    TicketType,
)
from ticketforge.store.memory import InMemoryTicketStore, generate_ticket_id

__all__ = [
    "UPDATABLE_FIELDS",
    "WORKABLE_STATUSES",
    "ConcurrencyConflictError",
    "InMemoryTicketStore",
    "Ticket",
    "TicketCreate",
    "TicketStatus",
    "TicketStore",
    "TicketStoreError",
    "TicketType",
    "generate_ticket_id",
]
