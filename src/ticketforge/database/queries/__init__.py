"""Database query functions for Ticketforge tickets."""

from ticketforge.database.queries.ticket import (
    compare_and_swap_ticket,
    create_ticket,
    get_ticket,
    list_tickets,
    update_ticket,
)

__all__ = [
    "compare_and_swap_ticket",
    "create_ticket",
    "get_ticket",
    "list_tickets",
    "update_ticket",
]
