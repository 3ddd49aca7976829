"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(14, 6)
RATE = sa.Numeric(12, 6)


def upgrade() -> None:
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("api_key", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=True),
        sa.Column("credits", MONEY, nullable=False),
        sa.Column("rate_per_second", RATE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_used", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_api_keys_api_key", "api_keys", ["api_key"], unique=True)

    op.create_table(
        "call_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_id", sa.String(length=128), nullable=True),
        sa.Column("api_key_id", sa.Integer(), nullable=True),
        sa.Column("number", sa.String(length=64), nullable=True),
        sa.Column("caller_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("amd_status", sa.String(length=32), nullable=True),
        sa.Column("end_reason", sa.String(length=64), nullable=True),
        sa.Column("hangup_cause", sa.String(length=16), nullable=True),
        sa.Column("trunk", sa.String(length=128), nullable=True),
        sa.Column("recording_filename", sa.String(length=255), nullable=True),
        sa.Column("webhook_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("answered_at", sa.DateTime(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("bill_seconds", sa.Integer(), nullable=True),
        sa.Column("bill_cost", MONEY, nullable=True),
        sa.ForeignKeyConstraint(["api_key_id"], ["api_keys.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_call_logs_call_id", "call_logs", ["call_id"], unique=True)
    op.create_index("ix_call_logs_api_key_id", "call_logs", ["api_key_id"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("api_key_id", sa.Integer(), nullable=False),
        sa.Column("call_id", sa.String(length=128), nullable=True),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("balance_before", MONEY, nullable=False),
        sa.Column("balance_after", MONEY, nullable=False),
        sa.Column("billable_seconds", sa.Integer(), nullable=False),
        sa.Column("rate_per_second", RATE, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["api_key_id"], ["api_keys.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_credit_transactions_call_id",
        "credit_transactions",
        ["call_id"],
        unique=True,
    )
    op.create_index(
        "ix_credit_transactions_api_key_id",
        "credit_transactions",
        ["api_key_id"],
        unique=False,
    )

    op.create_table(
        "sip_trunks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("trunk_name", sa.String(length=128), nullable=False),
        sa.Column("provider", sa.String(length=128), nullable=True),
        sa.Column("server", sa.String(length=255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("context", sa.String(length=64), nullable=False),
        sa.Column("codecs", sa.String(length=128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sip_trunks_trunk_name", "sip_trunks", ["trunk_name"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_sip_trunks_trunk_name", table_name="sip_trunks")
    op.drop_table("sip_trunks")

    op.drop_index("ix_credit_transactions_api_key_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_call_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_index("ix_call_logs_api_key_id", table_name="call_logs")
    op.drop_index("ix_call_logs_call_id", table_name="call_logs")
    op.drop_table("call_logs")

    op.drop_index("ix_api_keys_api_key", table_name="api_keys")
    op.drop_table("api_keys")
