"""Initial schema for Ticketforge.

Creates the tickets table with its status and listing indexes.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TICKET_STATUSES = ("open", "in-progress", "pending", "blocked", "done", "removed")
TICKET_TYPES = ("ai_to_human", "human_to_ai", "answer_agent")


def upgrade() -> None:
    op.create_table(
        "tickets",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                *TICKET_STATUSES,
                name="ticket_status",
                native_enum=False,
                length=20,
            ),
            nullable=False,
            server_default="open",
        ),
        sa.Column(
            "type",
            sa.Enum(
                *TICKET_TYPES,
                name="ticket_type",
                native_enum=False,
                length=20,
            ),
            nullable=True,
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("creator", sa.Text(), nullable=False, server_default="system"),
        sa.Column("assignee", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_index("ix_tickets_status", "tickets", ["status"])
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_tickets_created_at", table_name="tickets")
    op.drop_index("ix_tickets_status", table_name="tickets")
    op.drop_table("tickets")
