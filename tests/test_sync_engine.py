import threading
from datetime import UTC

import pytest

from autoledger.ledger import LedgerStorageError
from autoledger.models import SinkTarget, SyncOutcome, SyncStatus
from autoledger.sheets import GoogleSheetsSink
from autoledger.sink import NotConfiguredError, SinkAuthError, SinkError, SinkTimeoutError
from autoledger.sync import SyncEngine

from tests.helpers.db import make_candidate
from tests.helpers.sink_stub import RecordingSink


class _Interrupted(BaseException):
    pass


def _engine(store, sink, target, **kw):
    return SyncEngine(store, sink, target, tz=UTC, **kw)


# ---- sync_one --------------------------------------------------------------------


def test_successful_delivery_appends_row_and_marks_synced(store, sink, target):
    rec = store.insert(make_candidate("42.50", merchant="Dunkin #123", category="Coffee/Snacks"))

    attempt = _engine(store, sink, target).sync_one(rec)

    assert attempt.outcome is SyncOutcome.DELIVERED
    assert attempt.success
    assert sink.rows == [
        ("sheet123", "Transactions", ["01/02/2025", "42.50", "Dunkin #123", "Coffee/Snacks"])
    ]
    assert store.get(rec.id).sync_status is SyncStatus.SYNCED


def test_timeout_marks_failed_with_underlying_message(store, target):
    sink = RecordingSink(fail_with=SinkTimeoutError("Sheets request timed out after 15s"))
    rec = store.insert(make_candidate())

    attempt = _engine(store, sink, target).sync_one(rec)

    assert attempt.outcome is SyncOutcome.FAILED
    assert isinstance(attempt.error, SinkTimeoutError)
    assert "timed out after 15s" in str(attempt.error)
    stored = store.get(rec.id)
    assert stored.sync_status is SyncStatus.FAILED
    assert stored.last_error == "Sheets request timed out after 15s"


def test_missing_credentials_mark_failed(store, target):
    rec = store.insert(make_candidate())

    with GoogleSheetsSink(token=None) as sheets:
        attempt = _engine(store, sheets, target).sync_one(rec)

    assert attempt.outcome is SyncOutcome.FAILED
    assert isinstance(attempt.error, SinkAuthError)
    assert "Not signed in" in store.get(rec.id).last_error


def test_unexpected_sink_exception_still_resolves_record(store, target):
    sink = RecordingSink(fail_with=KeyError("columns"))
    rec = store.insert(make_candidate())

    attempt = _engine(store, sink, target).sync_one(rec)

    assert attempt.outcome is SyncOutcome.FAILED
    assert store.get(rec.id).sync_status is SyncStatus.FAILED


def test_not_configured_leaves_record_pending(store, sink):
    rec = store.insert(make_candidate())

    attempt = _engine(store, sink, None).sync_one(rec)

    assert attempt.outcome is SyncOutcome.NOT_CONFIGURED
    assert isinstance(attempt.error, NotConfiguredError)
    assert sink.rows == []
    assert store.get(rec.id).sync_status is SyncStatus.PENDING


def test_blank_target_counts_as_not_configured(store, sink):
    rec = store.insert(make_candidate())

    attempt = _engine(store, sink, SinkTarget(sheet_id="  ")).sync_one(rec)

    assert attempt.outcome is SyncOutcome.NOT_CONFIGURED


def test_already_synced_record_is_not_appended_again(store, sink, target):
    rec = store.insert(make_candidate())
    engine = _engine(store, sink, target)
    engine.sync_one(rec)

    # ``rec`` is the stale PENDING snapshot from insert.
    attempt = engine.sync_one(rec)

    assert attempt.outcome is SyncOutcome.DELIVERED
    assert len(sink.rows) == 1


def test_cancel_before_remote_call_leaves_status_unchanged(store, sink, target):
    rec = store.insert(make_candidate())
    cancel = threading.Event()
    cancel.set()

    attempt = _engine(store, sink, target).sync_one(rec, cancel=cancel)

    assert attempt.outcome is SyncOutcome.SKIPPED
    assert sink.rows == []
    assert store.get(rec.id).sync_status is SyncStatus.PENDING


def test_interruption_during_remote_call_marks_failed(store, target):
    sink = RecordingSink(fail_with=_Interrupted())
    rec = store.insert(make_candidate())

    with pytest.raises(_Interrupted):
        _engine(store, sink, target).sync_one(rec)

    stored = store.get(rec.id)
    assert stored.sync_status is SyncStatus.FAILED
    assert "interrupted" in stored.last_error


def test_interruption_survives_failed_status_write(store, target, monkeypatch):
    sink = RecordingSink(fail_with=_Interrupted())
    rec = store.insert(make_candidate())

    def _broken_update(*_args, **_kwargs):
        raise LedgerStorageError("database is locked")

    monkeypatch.setattr(store, "update_status", _broken_update)

    with pytest.raises(_Interrupted):
        _engine(store, sink, target).sync_one(rec)

    assert store.get(rec.id).sync_status is SyncStatus.PENDING


def test_concurrent_delivery_of_same_record_is_skipped(store, sink, target):
    rec = store.insert(make_candidate())
    engine = _engine(store, sink, target)
    started = threading.Event()
    release = threading.Event()

    def _block(_cols: list[str]) -> None:
        started.set()
        assert release.wait(timeout=5)

    sink.on_append = _block
    results = []
    worker = threading.Thread(target=lambda: results.append(engine.sync_one(rec)))
    worker.start()
    assert started.wait(timeout=5)

    second = engine.sync_one(rec)
    release.set()
    worker.join(timeout=5)

    assert second.outcome is SyncOutcome.SKIPPED
    assert results[0].outcome is SyncOutcome.DELIVERED
    assert len(sink.rows) == 1


def test_target_callable_is_read_on_every_attempt(store, sink):
    holder: list[SinkTarget | None] = [None]
    engine = _engine(store, sink, lambda: holder[0])
    rec = store.insert(make_candidate())

    assert engine.sync_one(rec).outcome is SyncOutcome.NOT_CONFIGURED
    holder[0] = SinkTarget("sheet-b", "Spending")
    assert engine.sync_one(rec).outcome is SyncOutcome.DELIVERED
    assert sink.rows[0][:2] == ("sheet-b", "Spending")


# ---- drain_pending ------------------------------------------------------------


def test_drain_without_target_makes_no_attempts(store, sink):
    recs = [store.insert(make_candidate()) for _ in range(3)]

    summary = _engine(store, sink, None).drain_pending()

    assert summary.attempted == 0
    assert summary.succeeded == 0 and summary.failed == 0
    assert summary.configured is False
    assert summary.message == "No spreadsheet configured"
    assert sink.rows == []
    assert [r.sync_status for r in store.list_pending()] == [SyncStatus.PENDING] * 3
    assert [r.id for r in store.list_pending()] == [r.id for r in recs]


def test_drain_delivers_in_insertion_order(store, sink, target):
    for amount in ("1.00", "2.00", "3.00"):
        store.insert(make_candidate(amount))

    summary = _engine(store, sink, target).drain_pending()

    assert (summary.succeeded, summary.failed, summary.attempted) == (3, 0, 3)
    assert [cols[1] for cols in sink.appended] == ["1.00", "2.00", "3.00"]
    assert store.list_unsynced() == []


def test_drain_counts_failures_and_retries_them_next_pass(store, target):
    sink = RecordingSink(fail_times=1)
    first = store.insert(make_candidate("1.00"))
    store.insert(make_candidate("2.00"))
    engine = _engine(store, sink, target)

    summary = engine.drain_pending()
    assert (summary.succeeded, summary.failed) == (1, 1)
    assert store.get(first.id).sync_status is SyncStatus.FAILED

    retry = engine.drain_pending()
    assert (retry.succeeded, retry.failed) == (1, 0)
    stored = store.get(first.id)
    assert stored.sync_status is SyncStatus.SYNCED
    assert stored.last_error is None


def test_drain_can_skip_failed_records(store, target):
    sink = RecordingSink(fail_times=1)
    first = store.insert(make_candidate("1.00"))
    engine = _engine(store, sink, target)
    engine.sync_one(first)

    summary = engine.drain_pending(include_failed=False)

    assert summary.attempted == 0
    assert summary.message == "No pending transactions"


def test_drain_cancelled_between_records(store, sink, target):
    for amount in ("1.00", "2.00", "3.00"):
        store.insert(make_candidate(amount))
    cancel = threading.Event()
    sink.on_append = lambda _cols: cancel.set()

    summary = _engine(store, sink, target).drain_pending(cancel=cancel)

    assert summary.cancelled is True
    assert summary.succeeded == 1
    assert len(sink.rows) == 1
    assert len(store.list_pending()) == 2


# ---- prepare_target ------------------------------------------------------------


def test_prepare_target_accepts_url_and_writes_headers(store, sink):
    url = "https://docs.google.com/spreadsheets/d/1AbC-d_9/edit#gid=0"

    check = _engine(store, sink, None).prepare_target(url, " Spending ")

    assert check.target == SinkTarget("1AbC-d_9", "Spending")
    assert check.display_name == "Budget 2025"
    assert check.headers_ready is True
    assert sink.validated == ["1AbC-d_9"]
    assert sink.header_calls == [("1AbC-d_9", "Spending")]


def test_prepare_target_header_failure_is_best_effort(store):
    sink = RecordingSink(headers_error=SinkError("protected range"))

    check = _engine(store, sink, None).prepare_target("sheet123")

    assert check.headers_ready is False
    assert check.target.tab_name == "Transactions"


def test_prepare_target_propagates_access_errors(store):
    sink = RecordingSink(validate_error=SinkAuthError("denied"))

    with pytest.raises(SinkAuthError):
        _engine(store, sink, None).prepare_target("sheet123")


def test_prepare_target_rejects_unrecognized_url(store, sink):
    with pytest.raises(ValueError):
        _engine(store, sink, None).prepare_target("https://example.com/not-a-sheet")
    assert sink.validated == []
