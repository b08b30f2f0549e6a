from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Sentinels shared with the application layer and the migrations.
DEFAULT_MERCHANT = "Unknown"
DEFAULT_CATEGORY = "Uncategorized"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: ledger_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    # SQLite only autoincrements an INTEGER PRIMARY KEY (rowid alias).
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    # Combined notification text, truncated to 200 chars for audit/debug.
    raw_text: Mapped[str] = mapped_column(String(200), nullable=False)
    merchant: Mapped[str] = mapped_column(
        String(50), nullable=False, server_default=text(f"'{DEFAULT_MERCHANT}'")
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    # Added by revision 0002; older rows are backfilled with the sentinel.
    category: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text(f"'{DEFAULT_CATEGORY}'")
    )
    source_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sync_status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'PENDING'")
    )
    # Message of the most recent delivery failure, kept for display.
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_tx_amount_positive"),
        CheckConstraint(
            "kind in ('CREDIT','DEBIT','UNKNOWN')",
            name="ck_ledger_tx_kind",
        ),
        CheckConstraint(
            "sync_status in ('PENDING','SYNCED','FAILED')",
            name="ck_ledger_tx_sync_status",
        ),
        Index("ix_ledger_tx_status_created", "sync_status", "created_at"),
        Index("ix_ledger_tx_created", "created_at"),
    )


__all__ = [
    "Base",
    "LedgerTransaction",
    "DEFAULT_MERCHANT",
    "DEFAULT_CATEGORY",
]
