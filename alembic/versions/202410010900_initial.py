"""initial ledger schema

Revision ID: 202410010900
Revises:
Create Date: 2024-10-01 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202410010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "kind",
            sa.Enum("income", "expense", name="entrykind"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("recurrence_interval", sa.String(length=20), nullable=True),
        sa.Column("recurrence_end", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_entries_amount_positive"),
    )
    op.create_index(
        "ix_entries_user_kind_date", "entries", ["user_id", "kind", "date"]
    )

    op.create_table(
        "receipt_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_receipt_items_user_date", "receipt_items", ["user_id", "date"]
    )

    op.create_table(
        "monthly_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("starting_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_balance_user_month"),
        sa.CheckConstraint(
            "month >= 1 AND month <= 12", name="ck_balance_month_range"
        ),
    )


def downgrade() -> None:
    op.drop_table("monthly_balances")
    op.drop_index("ix_receipt_items_user_date", table_name="receipt_items")
    op.drop_table("receipt_items")
    op.drop_index("ix_entries_user_kind_date", table_name="entries")
    op.drop_table("entries")
