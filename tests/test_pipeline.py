from datetime import UTC

import pytest

from autoledger.classifier_config import ClassifierConfig
from autoledger.ledger import LedgerStorageError, LedgerStore
from autoledger.models import NotificationEvent, PipelineOutcome, SyncStatus
from autoledger.pipeline import PipelineListener, PipelineOrchestrator
from autoledger.sink import SinkError
from autoledger.sync import SyncEngine

from tests.helpers.sink_stub import RecordingSink

CHASE = "com.chase.sig.android"
SPENT = "You spent $42.50 at Dunkin #123 Q1"


class RecordingListener(PipelineListener):
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def on_delivered(self, record):
        self.calls.append(("delivered", record.id))

    def on_saved_pending(self, record, reason):
        self.calls.append(("pending", record.id))

    def on_save_failed(self, record, reason):
        self.calls.append(("failed", str(reason)))

    def on_storage_error(self, event, error):
        self.calls.append(("storage", event.key))


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def make_pipeline(store, sink, target, listener):
    created: list[PipelineOrchestrator] = []

    def _make(*, sink=sink, target=target, store=store, config=None):
        engine = SyncEngine(store, sink, target, tz=UTC)
        pipeline = PipelineOrchestrator(
            config or ClassifierConfig(), store, engine, listener=listener, max_workers=4
        )
        created.append(pipeline)
        return pipeline

    yield _make
    for p in created:
        p.close()


def test_delivered_event_can_be_dismissed(make_pipeline, store, sink, listener):
    event = NotificationEvent(CHASE, title="Chase", body=SPENT, key="n-1")

    result = make_pipeline().handle_event(event)

    assert result.outcome is PipelineOutcome.DELIVERED
    assert result.should_dismiss is True
    assert result.event is event
    assert result.record.sync_status is SyncStatus.SYNCED
    assert sink.appended[0][1:] == ["42.50", "Dunkin #123 Q1", "Coffee/Snacks"]
    assert listener.calls == [("delivered", result.record.id)]


def test_non_financial_source_creates_nothing(make_pipeline, store, listener):
    result = make_pipeline().handle_event(NotificationEvent("com.spotify.music", body=SPENT))

    assert result.outcome is PipelineOutcome.REJECTED_SOURCE
    assert result.record is None
    assert store.list_recent() == []
    assert listener.calls == []


def test_event_without_amount_creates_nothing(make_pipeline, store):
    result = make_pipeline().handle_event(
        NotificationEvent(CHASE, title="Security alert", body="New sign-in from Chrome")
    )

    assert result.outcome is PipelineOutcome.NOT_A_TRANSACTION
    assert store.list_recent() == []


def test_unconfigured_sink_saves_pending(make_pipeline, store, sink, listener):
    result = make_pipeline(target=None).handle_event(NotificationEvent(CHASE, body=SPENT))

    assert result.outcome is PipelineOutcome.SAVED_PENDING
    assert result.should_dismiss is False
    assert store.get(result.record.id).sync_status is SyncStatus.PENDING
    assert sink.rows == []
    assert listener.calls == [("pending", result.record.id)]


def test_delivery_failure_saves_failed_with_reason(make_pipeline, store, listener):
    failing = RecordingSink(fail_with=SinkError("HTTP 500: internal"))

    result = make_pipeline(sink=failing).handle_event(NotificationEvent(CHASE, body=SPENT))

    assert result.outcome is PipelineOutcome.SAVED_FAILED
    assert str(result.error) == "HTTP 500: internal"
    assert store.get(result.record.id).sync_status is SyncStatus.FAILED
    assert listener.calls == [("failed", "HTTP 500: internal")]


def test_storage_failure_is_raised_and_signalled(make_pipeline, tmp_path, listener):
    broken = LedgerStore.from_url(f"sqlite+pysqlite:///{tmp_path / 'no_schema.db'}")
    event = NotificationEvent(CHASE, body=SPENT, key="n-9")

    with pytest.raises(LedgerStorageError):
        make_pipeline(store=broken).handle_event(event)

    assert listener.calls == [("storage", "n-9")]


def test_listener_errors_do_not_change_outcome(store, sink, target):
    class Exploding(PipelineListener):
        def on_delivered(self, record):
            raise RuntimeError("ui crashed")

    engine = SyncEngine(store, sink, target, tz=UTC)
    with PipelineOrchestrator(ClassifierConfig(), store, engine, listener=Exploding()) as p:
        result = p.handle_event(NotificationEvent(CHASE, body=SPENT))

    assert result.outcome is PipelineOutcome.DELIVERED


def test_config_updates_apply_to_next_event(make_pipeline, store):
    config = ClassifierConfig()
    pipeline = make_pipeline(config=config)

    config.exclude_source(CHASE)
    result = pipeline.handle_event(NotificationEvent(CHASE, body=SPENT))

    assert result.outcome is PipelineOutcome.REJECTED_SOURCE


def test_submit_runs_on_worker_pool(make_pipeline):
    fut = make_pipeline().submit(NotificationEvent(CHASE, body=SPENT))

    assert fut.result(timeout=10).outcome is PipelineOutcome.DELIVERED


def test_ingest_many_keeps_input_order(make_pipeline, store, sink):
    events = [
        NotificationEvent(CHASE, body=f"You spent ${n}.00 at Shop {n}", key=str(n))
        for n in range(1, 9)
    ]
    events.insert(3, NotificationEvent("com.spotify.music", body="Now playing", key="x"))

    results = make_pipeline().ingest_many(events)

    assert [r.event.key for r in results] == [e.key for e in events]
    assert results[3].outcome is PipelineOutcome.REJECTED_SOURCE
    delivered = [r for r in results if r.outcome is PipelineOutcome.DELIVERED]
    assert len(delivered) == 8
    assert len(sink.rows) == 8
    assert len({r.record.id for r in delivered}) == 8


def test_ingest_many_groups_storage_errors(make_pipeline, tmp_path):
    broken = LedgerStore.from_url(f"sqlite+pysqlite:///{tmp_path / 'no_schema.db'}")
    events = [NotificationEvent(CHASE, body=SPENT), NotificationEvent(CHASE, body=SPENT)]

    with pytest.raises(ExceptionGroup) as excinfo:
        make_pipeline(store=broken).ingest_many(events)

    assert len(excinfo.value.exceptions) == 2
    assert all(isinstance(e, LedgerStorageError) for e in excinfo.value.exceptions)


def test_background_drain_delivers_saved_pending(make_pipeline, store, sink, target):
    offline = make_pipeline(target=None)
    for _ in range(3):
        offline.handle_event(NotificationEvent(CHASE, body=SPENT))
    assert len(store.list_pending()) == 3

    summary = make_pipeline().drain_in_background().result(timeout=10)

    assert summary.succeeded == 3
    assert store.list_pending() == []


def test_close_stops_delivery_of_later_events(make_pipeline, store, sink):
    pipeline = make_pipeline()
    pipeline.close()

    # Inline handling still stores the record but skips delivery.
    result = pipeline.handle_event(NotificationEvent(CHASE, body=SPENT))

    assert result.outcome is PipelineOutcome.SAVED_PENDING
    assert sink.rows == []
