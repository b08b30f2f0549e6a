# ruff: noqa: I001
"""Create the ledger_transactions table (sync-state ledger).

Revision ID: 0001_ledger_core
Revises:
Create Date: 2025-11-03
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ledger_transactions",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("raw_text", sa.String(200), nullable=False),
        sa.Column("merchant", sa.String(50), nullable=False, server_default=sa.text("'Unknown'")),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "sync_status", sa.String(16), nullable=False, server_default=sa.text("'PENDING'")
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_ledger_tx_amount_positive"),
        sa.CheckConstraint("kind in ('CREDIT','DEBIT','UNKNOWN')", name="ck_ledger_tx_kind"),
        sa.CheckConstraint(
            "sync_status in ('PENDING','SYNCED','FAILED')", name="ck_ledger_tx_sync_status"
        ),
    )

    # Drain order: pending rows oldest first
    op.create_index(
        "ix_ledger_tx_status_created",
        "ledger_transactions",
        ["sync_status", "created_at"],
        unique=False,
    )
    # Recent-first listing
    op.create_index("ix_ledger_tx_created", "ledger_transactions", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_ledger_tx_created", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_status_created", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
