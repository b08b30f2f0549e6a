# ruff: noqa: I001
"""Add the category column; existing rows get the default sentinel.

Revision ID: 0002_ledger_category
Revises: 0001_ledger_core
Create Date: 2025-12-08
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_ledger_category"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # NOT NULL with a server default backfills every pre-existing row.
    op.add_column(
        "ledger_transactions",
        sa.Column(
            "category",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'Uncategorized'"),
        ),
    )


def downgrade() -> None:
    with op.batch_alter_table("ledger_transactions") as batch_op:
        batch_op.drop_column("category")
