"""Ticketforge - ticket-driven task queue for multi-agent coding workflows.

This package provides the orchestrator scheduler that turns persisted
tickets into an ordered work queue, hands tasks to a coding agent one at a
time, and escalates stalled work as high-priority blocked tickets.
"""

__version__ = "0.1.0"
