"""DB helpers for tests: bootstrap a temporary SQLite ledger and seed records."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

from ledger_db import Base
from ledger_db.client import create_ledger_engine

from autoledger.models import TransactionCandidate, TransactionKind


def bootstrap_sqlite_db(db_file: Path) -> str:
    """Create a SQLite database file with the ledger schema and return its URL.

    Using a file-backed SQLite DB ensures the pipeline's worker threads share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = create_ledger_engine(url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    return url


class FixedClock:
    """Deterministic clock: each call advances by ``step`` from ``start``."""

    def __init__(
        self,
        start: datetime = datetime(2025, 1, 2, 15, 30, tzinfo=UTC),
        step: timedelta = timedelta(seconds=1),
    ) -> None:
        self._next = start
        self._step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self._next
            self._next = now + self._step
            return now


def make_candidate(
    amount: str = "42.50",
    *,
    merchant: str = "Dunkin",
    category: str = "Coffee/Snacks",
    kind: TransactionKind = TransactionKind.DEBIT,
    source_id: str = "com.chase.sig.android",
    raw_text: str | None = None,
) -> TransactionCandidate:
    return TransactionCandidate(
        amount=Decimal(amount),
        raw_text=raw_text if raw_text is not None else f"You spent ${amount} at {merchant}",
        merchant=merchant,
        kind=kind,
        category=category,
        source_id=source_id,
    )
