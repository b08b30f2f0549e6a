"""Delivery of ledger records to the remote sink.

:class:`SyncEngine` turns one delivery attempt into a terminal status change:

- sink call succeeded -> ``SYNCED``
- sink call raised (timeout, auth, HTTP, anything) -> ``FAILED`` with the error
  message stored on the record and the exception returned to the caller

No target configured is not a delivery failure: nothing is attempted and the
record keeps its status. Retries only happen when a caller runs
:meth:`SyncEngine.sync_one` or :meth:`SyncEngine.drain_pending` again; there is
no internal backoff or scheduling.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import tzinfo

from .ledger import LedgerError, LedgerStore
from .logging_setup import get_logger
from .models import (
    SinkTarget,
    SyncAttempt,
    SyncOutcome,
    SyncStatus,
    SyncSummary,
    TargetCheck,
    TransactionRecord,
)
from .sink import LedgerSink, NotConfiguredError, SinkError, extract_spreadsheet_id, format_row

_logger = get_logger("autoledger.sync")

TargetSource = SinkTarget | Callable[[], SinkTarget | None] | None


class SyncEngine:
    """Deliver records from a :class:`LedgerStore` to a :class:`LedgerSink`.

    Parameters
    ----------
    store:
        The ledger; the engine only changes records through
        :meth:`LedgerStore.update_status`.
    sink:
        Remote append target. Its calls must be bounded by a timeout.
    target:
        The configured spreadsheet/tab, or a callable returning the current
        one (read on every attempt so configuration changes apply
        immediately). ``None`` means not configured.
    tz:
        Timezone for the date column; local time when ``None``.
    """

    def __init__(
        self,
        store: LedgerStore,
        sink: LedgerSink,
        target: TargetSource = None,
        *,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._sink = sink
        self._target = target
        self._tz = tz
        self._inflight: set[int] = set()
        self._inflight_lock = threading.Lock()

    # ---- target --------------------------------------------------------------

    def current_target(self) -> SinkTarget | None:
        target = self._target() if callable(self._target) else self._target
        if target is None or not target.is_configured:
            return None
        return target

    def prepare_target(self, url_or_id: str, tab_name: str = "Transactions") -> TargetCheck:
        """Validate a spreadsheet before it is saved as the target.

        Raises ``ValueError`` for an unrecognizable URL/id and
        :class:`SinkError` when the spreadsheet is not accessible. Header-row
        creation is best-effort: a failure is logged and reported as
        ``headers_ready=False``.
        """

        sheet_id = extract_spreadsheet_id(url_or_id)
        if not sheet_id:
            raise ValueError(f"not a spreadsheet URL or id: {url_or_id!r}")
        tab = tab_name.strip() or "Transactions"

        display_name = self._sink.validate_target(sheet_id)
        try:
            self._sink.ensure_headers(sheet_id, tab)
            headers_ready = True
        except SinkError as e:
            _logger.warning("Could not create header row in %s/%s: %s", sheet_id, tab, e)
            headers_ready = False
        return TargetCheck(
            target=SinkTarget(sheet_id=sheet_id, tab_name=tab),
            display_name=display_name,
            headers_ready=headers_ready,
        )

    # ---- single record -------------------------------------------------------

    def _claim(self, record_id: int) -> bool:
        with self._inflight_lock:
            if record_id in self._inflight:
                return False
            self._inflight.add(record_id)
            return True

    def _release(self, record_id: int) -> None:
        with self._inflight_lock:
            self._inflight.discard(record_id)

    def sync_one(
        self,
        record: TransactionRecord,
        *,
        cancel: threading.Event | None = None,
    ) -> SyncAttempt:
        """Attempt delivery of ``record`` and resolve it to SYNCED or FAILED.

        Returns ``NOT_CONFIGURED`` without touching the record when no target
        is set, and ``SKIPPED`` when another worker is already delivering the
        same record or ``cancel`` was set before the remote call started. An
        interruption during the remote call counts as a failure, since the
        append may or may not have landed.
        """

        target = self.current_target()
        if target is None:
            _logger.warning("No spreadsheet configured, skipping sync of record %d", record.id)
            return SyncAttempt(
                record, SyncOutcome.NOT_CONFIGURED, NotConfiguredError("No spreadsheet configured")
            )

        if not self._claim(record.id):
            _logger.debug("Record %d is already being delivered", record.id)
            return SyncAttempt(record, SyncOutcome.SKIPPED)

        try:
            current = self._store.get(record.id)
            if current.sync_status is SyncStatus.SYNCED:
                return SyncAttempt(current, SyncOutcome.DELIVERED)
            if cancel is not None and cancel.is_set():
                return SyncAttempt(current, SyncOutcome.SKIPPED)

            row = format_row(current, tz=self._tz)
            try:
                self._sink.append_row(target.sheet_id, target.tab_name, row)
            except Exception as e:  # noqa: BLE001
                message = str(e) or type(e).__name__
                _logger.warning("Failed to sync record %d: %s", record.id, message)
                failed = self._store.update_status(record.id, SyncStatus.FAILED, error=message)
                return SyncAttempt(failed, SyncOutcome.FAILED, e)
            except BaseException as e:
                # Completion unknown: record it as a failed attempt.
                try:
                    self._store.update_status(
                        record.id,
                        SyncStatus.FAILED,
                        error=f"interrupted during delivery: {type(e).__name__}",
                    )
                except LedgerError:
                    _logger.exception(
                        "Could not mark interrupted record %d as failed", record.id
                    )
                raise

            synced = self._store.update_status(record.id, SyncStatus.SYNCED)
            _logger.info("Record %d synced to %s/%s", record.id, target.sheet_id, target.tab_name)
            return SyncAttempt(synced, SyncOutcome.DELIVERED)
        finally:
            self._release(record.id)

    # ---- batch drain ---------------------------------------------------------

    def drain_pending(
        self,
        *,
        cancel: threading.Event | None = None,
        include_failed: bool = True,
    ) -> SyncSummary:
        """Deliver every unsynced record, oldest first, one at a time.

        ``include_failed`` retries FAILED records in the same pass. A missing
        target short-circuits with zero attempts. Setting ``cancel`` stops the
        pass before the next record.
        """

        if self.current_target() is None:
            _logger.info("Drain skipped: no spreadsheet configured")
            return SyncSummary(message="No spreadsheet configured", configured=False)

        records = self._store.list_unsynced() if include_failed else self._store.list_pending()
        if not records:
            return SyncSummary(message="No pending transactions")

        succeeded = failed = 0
        cancelled = False
        message: str | None = None
        for record in records:
            if cancel is not None and cancel.is_set():
                cancelled = True
                break
            attempt = self.sync_one(record, cancel=cancel)
            if attempt.outcome is SyncOutcome.DELIVERED:
                succeeded += 1
            elif attempt.outcome is SyncOutcome.FAILED:
                failed += 1
            elif attempt.outcome is SyncOutcome.NOT_CONFIGURED:
                # Target was removed mid-pass.
                message = "No spreadsheet configured"
                break
            elif cancel is not None and cancel.is_set():
                cancelled = True
                break

        if cancelled:
            message = "Sync cancelled"
        _logger.info(
            "Drain finished: %d synced, %d failed of %d queued%s",
            succeeded,
            failed,
            len(records),
            " (cancelled)" if cancelled else "",
        )
        return SyncSummary(
            succeeded=succeeded,
            failed=failed,
            attempted=succeeded + failed,
            message=message,
            cancelled=cancelled,
        )


__all__ = ["SyncEngine"]
