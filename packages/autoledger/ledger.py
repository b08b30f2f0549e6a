# ruff: noqa: I001
"""Durable ledger of parsed transactions and their delivery state.

The store is the single writer of ``id`` and ``sync_status``. Records are
inserted as ``PENDING`` and afterwards only their status (plus the last
delivery error) changes, along these edges::

    PENDING -> SYNCED | FAILED
    FAILED  -> SYNCED | FAILED
    SYNCED  (terminal)

Setting the current status again is a no-op. Any other move raises
:class:`InvalidStatusTransition`.

Status updates for the same id are serialized in-process with striped locks
and guarded in the database with a conditional ``UPDATE`` so a concurrent
writer in another process cannot rewind a row either.

Live views
----------
``observe(...)`` registers a listener that receives the current matching
records immediately and again after every committed write that changes the
view. ``observe_pending_count(...)`` does the same for the PENDING count.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_db import Base
from ledger_db.client import create_ledger_engine, make_session_factory, session_scope
from ledger_db.models.ledger import LedgerTransaction

from .logging_setup import get_logger
from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_MERCHANT,
    MAX_MERCHANT_LEN,
    MAX_RAW_TEXT_LEN,
    SyncStatus,
    TransactionCandidate,
    TransactionKind,
    TransactionRecord,
)

_logger = get_logger("autoledger.ledger")

_LOCK_STRIPES = 64

# Statuses a record may be in for a move *to* the key status.
_ALLOWED_FROM: dict[SyncStatus, tuple[SyncStatus, ...]] = {
    SyncStatus.SYNCED: (SyncStatus.PENDING, SyncStatus.FAILED),
    SyncStatus.FAILED: (SyncStatus.PENDING, SyncStatus.FAILED),
    SyncStatus.PENDING: (),
}


# ---------------------------
# Errors
# ---------------------------


class LedgerError(RuntimeError):
    """Base class for ledger store failures."""


class LedgerStorageError(LedgerError):
    """The database rejected or failed a read/write."""


class RecordNotFound(LedgerError, LookupError):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"ledger record {record_id} does not exist")
        self.record_id = record_id


class InvalidStatusTransition(LedgerError):
    def __init__(self, record_id: int, current: SyncStatus, target: SyncStatus) -> None:
        super().__init__(
            f"ledger record {record_id}: cannot move sync status {current} -> {target}"
        )
        self.record_id = record_id
        self.current = current
        self.target = target


def is_allowed_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return current in _ALLOWED_FROM[target]


# ---------------------------
# Row conversion
# ---------------------------


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    # SQLite drops tzinfo; values are always written in UTC.
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def _to_record(row: LedgerTransaction) -> TransactionRecord:
    created = _as_utc(row.created_at)
    assert created is not None
    return TransactionRecord(
        id=int(row.id),
        amount=Decimal(row.amount),
        raw_text=row.raw_text,
        merchant=row.merchant,
        kind=TransactionKind(row.kind),
        category=row.category,
        source_id=row.source_id,
        created_at=created,
        sync_status=SyncStatus(row.sync_status),
        last_error=row.last_error,
        updated_at=_as_utc(row.updated_at),
    )


# ---------------------------
# Subscriptions
# ---------------------------

RecordsListener = Callable[[list[TransactionRecord]], None]
CountListener = Callable[[int], None]


class Subscription:
    """Handle returned by :meth:`LedgerStore.observe`; ``close()`` detaches."""

    def __init__(
        self,
        store: LedgerStore,
        compute: Callable[[], Any],
        listener: Callable[[Any], None],
    ) -> None:
        self._store = store
        self._compute = compute
        self._listener = listener
        self._last: Any = None
        self._has_last = False
        self._lock = threading.Lock()
        self.active = True

    def refresh(self) -> None:
        """Recompute the view and notify the listener if it changed."""

        if not self.active:
            return
        # Held across the callback so listeners never see views out of order.
        with self._lock:
            value = self._compute()
            if self._has_last and value == self._last:
                return
            self._last = value
            self._has_last = True
            try:
                self._listener(value)
            except Exception:
                _logger.exception("Ledger view listener failed")

    def close(self) -> None:
        if self.active:
            self.active = False
            self._store._detach(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ---------------------------
# Store
# ---------------------------


class LedgerStore:
    """SQLAlchemy-backed ledger of :class:`TransactionRecord` rows."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._factory = session_factory
        self._clock = clock or (lambda: datetime.now(UTC))
        self._stripes = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        self._subs_lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    @classmethod
    def from_url(
        cls,
        database_url: str,
        *,
        create_schema: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> LedgerStore:
        engine = create_ledger_engine(database_url)
        store = cls(make_session_factory(engine), clock=clock)
        if create_schema:
            store.create_schema(engine)
        return store

    @staticmethod
    def create_schema(engine: Engine) -> None:
        """Create tables straight from the ORM metadata.

        Meant for tests and throwaway databases; long-lived databases are
        managed with the Alembic revisions under ``libs/db/alembic``.
        """

        Base.metadata.create_all(bind=engine)

    def _lock_for(self, record_id: int) -> threading.Lock:
        return self._stripes[record_id % _LOCK_STRIPES]

    # ---- writes --------------------------------------------------------------

    def insert(self, candidate: TransactionCandidate) -> TransactionRecord:
        """Persist ``candidate`` as a new PENDING record and return it.

        The store assigns ``id`` and ``created_at``. Database failures raise
        :class:`LedgerStorageError`; nothing is dropped silently.
        """

        if candidate.amount <= 0:
            raise ValueError(f"amount must be positive, got {candidate.amount}")

        now = self._clock()
        row = LedgerTransaction(
            amount=candidate.amount,
            raw_text=candidate.raw_text[:MAX_RAW_TEXT_LEN],
            merchant=(candidate.merchant or DEFAULT_MERCHANT)[:MAX_MERCHANT_LEN],
            kind=TransactionKind(candidate.kind).value,
            category=candidate.category or DEFAULT_CATEGORY,
            source_id=candidate.source_id,
            created_at=now,
            sync_status=SyncStatus.PENDING.value,
            last_error=None,
            updated_at=now,
        )
        try:
            with session_scope(self._factory) as session:
                session.add(row)
                session.flush()
                record = _to_record(row)
        except SQLAlchemyError as e:
            _logger.error("Failed to insert transaction from %s: %s", candidate.source_id, e)
            raise LedgerStorageError(f"failed to insert transaction: {e}") from e

        _logger.info(
            "Stored transaction %d: %s %s at %s",
            record.id,
            record.kind,
            record.amount,
            record.merchant,
        )
        self._notify()
        return record

    def update_status(
        self,
        record_id: int,
        status: SyncStatus | str,
        *,
        error: str | None = None,
    ) -> TransactionRecord:
        """Move a record to ``status`` and return the stored result.

        ``error`` is kept as ``last_error`` when moving to FAILED and cleared on
        SYNCED. Re-applying the current status changes nothing (except that a
        repeated FAILED with a different error message records the new
        message).
        """

        target = SyncStatus(status)
        changed = False
        with self._lock_for(record_id):
            try:
                with session_scope(self._factory) as session:
                    row = session.get(LedgerTransaction, record_id)
                    if row is None:
                        raise RecordNotFound(record_id)
                    current = SyncStatus(row.sync_status)

                    if current is target and not (
                        target is SyncStatus.FAILED
                        and error is not None
                        and error != row.last_error
                    ):
                        return _to_record(row)
                    if not is_allowed_transition(current, target):
                        raise InvalidStatusTransition(record_id, current, target)

                    now = self._clock()
                    stmt = (
                        update(LedgerTransaction)
                        .where(
                            (LedgerTransaction.id == record_id)
                            & LedgerTransaction.sync_status.in_(
                                [s.value for s in _ALLOWED_FROM[target]]
                            )
                        )
                        .values(
                            sync_status=target.value,
                            last_error=error if target is SyncStatus.FAILED else None,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    result = session.execute(stmt)
                    if result.rowcount == 0:
                        # Another process moved the row between our read and write.
                        session.expire(row)
                        raced = SyncStatus(row.sync_status)
                        if raced is target:
                            return _to_record(row)
                        raise InvalidStatusTransition(record_id, raced, target)

                    session.expire(row)
                    record = _to_record(row)
                    changed = True
            except SQLAlchemyError as e:
                _logger.error("Failed to update status of record %d: %s", record_id, e)
                raise LedgerStorageError(f"failed to update record {record_id}: {e}") from e

        if changed:
            _logger.debug("Record %d: %s -> %s", record_id, current, target)
            self._notify()
        return record

    # ---- reads ---------------------------------------------------------------

    def _query(self, stmt) -> list[TransactionRecord]:
        try:
            with session_scope(self._factory) as session:
                return [_to_record(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise LedgerStorageError(f"ledger query failed: {e}") from e

    def get(self, record_id: int) -> TransactionRecord:
        try:
            with session_scope(self._factory) as session:
                row = session.get(LedgerTransaction, record_id)
                if row is None:
                    raise RecordNotFound(record_id)
                return _to_record(row)
        except SQLAlchemyError as e:
            raise LedgerStorageError(f"failed to read record {record_id}: {e}") from e

    def list_by_status(self, *statuses: SyncStatus) -> list[TransactionRecord]:
        """Records in any of ``statuses``, oldest first (insertion order)."""

        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.sync_status.in_([SyncStatus(s).value for s in statuses]))
            .order_by(LedgerTransaction.created_at.asc(), LedgerTransaction.id.asc())
        )
        return self._query(stmt)

    def list_pending(self) -> list[TransactionRecord]:
        return self.list_by_status(SyncStatus.PENDING)

    def list_unsynced(self) -> list[TransactionRecord]:
        """PENDING and FAILED records, oldest first: the retry queue."""

        return self.list_by_status(SyncStatus.PENDING, SyncStatus.FAILED)

    def list_recent(self, limit: int = 20) -> list[TransactionRecord]:
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        stmt = (
            select(LedgerTransaction)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(limit)
        )
        return self._query(stmt)

    def count_by_status(self) -> dict[SyncStatus, int]:
        stmt = select(LedgerTransaction.sync_status, func.count()).group_by(
            LedgerTransaction.sync_status
        )
        try:
            with session_scope(self._factory) as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            raise LedgerStorageError(f"ledger count failed: {e}") from e
        counts = {s: 0 for s in SyncStatus}
        for status, n in rows:
            counts[SyncStatus(status)] = int(n)
        return counts

    # ---- live views ----------------------------------------------------------

    def observe(
        self,
        listener: RecordsListener,
        *,
        status: SyncStatus | None = None,
        where: Callable[[TransactionRecord], bool] | None = None,
    ) -> Subscription:
        """Push the matching records to ``listener`` now and after each change.

        ``status`` narrows the query in SQL (oldest first); ``where`` is an
        extra in-process predicate. Without ``status`` every write reloads the
        whole table, so long-lived views should pass one; use
        :meth:`observe_pending_count` when only the count is needed.
        """

        def _compute() -> tuple[TransactionRecord, ...]:
            if status is not None:
                records = self.list_by_status(status)
            else:
                records = self.list_by_status(*SyncStatus)
            if where is not None:
                records = [r for r in records if where(r)]
            return tuple(records)

        return self._attach(
            Subscription(self, _compute, lambda value: listener(list(value)))
        )

    def observe_pending_count(self, listener: CountListener) -> Subscription:
        return self._attach(
            Subscription(self, lambda: self.count_by_status()[SyncStatus.PENDING], listener)
        )

    def _attach(self, sub: Subscription) -> Subscription:
        with self._subs_lock:
            self._subscriptions.append(sub)
        sub.refresh()
        return sub

    def _detach(self, sub: Subscription) -> None:
        with self._subs_lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def _notify(self) -> None:
        with self._subs_lock:
            subs = list(self._subscriptions)
        for sub in subs:
            try:
                sub.refresh()
            except LedgerError:
                _logger.exception("Failed to refresh ledger view")


__all__ = [
    "InvalidStatusTransition",
    "LedgerError",
    "LedgerStorageError",
    "LedgerStore",
    "RecordNotFound",
    "Subscription",
    "is_allowed_transition",
]
