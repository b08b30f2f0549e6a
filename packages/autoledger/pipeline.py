"""Event pipeline: classify -> parse -> store -> deliver -> signal.

One :class:`PipelineOrchestrator` is built at process start with its
collaborators passed in explicitly. Each incoming event is handled on its own
worker thread (``submit``) or inline (``handle_event``); drains run on the same
pool.

Outcomes
--------
- ``REJECTED_SOURCE`` / ``NOT_A_TRANSACTION``: nothing stored, logged at DEBUG.
- ``DELIVERED``: stored and appended to the sink. Only now may the caller
  dismiss the originating event.
- ``SAVED_PENDING``: stored, delivery not attempted (no target configured or
  shutting down). The next drain picks it up.
- ``SAVED_FAILED``: stored, delivery attempted and failed; the error is on the
  result and on the record.

A storage failure is the only error raised out of the pipeline; the listener
is told first via ``on_storage_error``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from .classifier_config import ClassifierConfig
from .ledger import LedgerError, LedgerStore
from .logging_setup import get_logger
from .models import (
    NotificationEvent,
    PipelineOutcome,
    PipelineResult,
    SyncOutcome,
    SyncSummary,
    TransactionRecord,
)
from .parser import classify_source, parse_notification
from .sync import SyncEngine

_logger = get_logger("autoledger.pipeline")

DEFAULT_MAX_WORKERS = 4


class PipelineListener:
    """Feedback hooks for the presentation layer. Override what you need.

    Hooks run on the worker thread that handled the event. Exceptions raised
    by a hook are logged and do not affect the pipeline result.
    """

    def on_delivered(self, record: TransactionRecord) -> None:
        pass

    def on_saved_pending(self, record: TransactionRecord, reason: Exception | None) -> None:
        pass

    def on_save_failed(self, record: TransactionRecord, reason: Exception | None) -> None:
        pass

    def on_storage_error(self, event: NotificationEvent, error: Exception) -> None:
        pass


class PipelineOrchestrator:
    def __init__(
        self,
        config: ClassifierConfig,
        store: LedgerStore,
        engine: SyncEngine,
        *,
        listener: PipelineListener | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be a positive integer")
        self._config = config
        self._store = store
        self._engine = engine
        self._listener = listener or PipelineListener()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="autoledger"
        )
        self._shutdown = threading.Event()

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    # ---- single event --------------------------------------------------------

    def handle_event(
        self,
        event: NotificationEvent,
        *,
        cancel: threading.Event | None = None,
    ) -> PipelineResult:
        """Run ``event`` through the whole pipeline on the calling thread."""

        # One snapshot for both admission and extraction.
        snapshot = self._config.snapshot()
        if not classify_source(event.source_id, snapshot):
            _logger.debug("Ignoring event from non-financial source %s", event.source_id)
            return PipelineResult(event, PipelineOutcome.REJECTED_SOURCE)

        candidate = parse_notification(event.title, event.body, event.source_id, snapshot)
        if candidate is None:
            return PipelineResult(event, PipelineOutcome.NOT_A_TRANSACTION)

        try:
            record = self._store.insert(candidate)
            attempt = self._engine.sync_one(record, cancel=cancel or self._shutdown)
        except LedgerError as e:
            self._emit("on_storage_error", event, e)
            raise

        if attempt.outcome is SyncOutcome.DELIVERED:
            self._emit("on_delivered", attempt.record)
            return PipelineResult(event, PipelineOutcome.DELIVERED, attempt.record)
        if attempt.outcome is SyncOutcome.FAILED:
            self._emit("on_save_failed", attempt.record, attempt.error)
            return PipelineResult(
                event, PipelineOutcome.SAVED_FAILED, attempt.record, attempt.error
            )
        self._emit("on_saved_pending", attempt.record, attempt.error)
        return PipelineResult(event, PipelineOutcome.SAVED_PENDING, attempt.record, attempt.error)

    def _emit(self, hook: str, *args: object) -> None:
        try:
            getattr(self._listener, hook)(*args)
        except Exception:
            _logger.exception("Pipeline listener %s failed", hook)

    # ---- background work -----------------------------------------------------

    def submit(self, event: NotificationEvent) -> Future[PipelineResult]:
        """Handle ``event`` on the worker pool (fire-and-forget).

        Storage errors surface on the returned future and are also logged.
        """

        fut = self._executor.submit(self.handle_event, event)
        fut.add_done_callback(_log_failure)
        return fut

    def ingest_many(self, events: Iterable[NotificationEvent]) -> list[PipelineResult]:
        """Handle ``events`` concurrently and return results in input order.

        Every event is processed even when some fail; storage errors are then
        raised together as an ``ExceptionGroup``.
        """

        fut_to_idx: dict[Future[PipelineResult], int] = {}
        for idx, event in enumerate(events):
            fut_to_idx[self._executor.submit(self.handle_event, event)] = idx

        results: dict[int, PipelineResult] = {}
        errors: list[Exception] = []
        for fut in as_completed(fut_to_idx):
            try:
                results[fut_to_idx[fut]] = fut.result()
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        if errors:
            raise ExceptionGroup("ingest_many: one or more events failed to store", errors)
        return [results[i] for i in range(len(fut_to_idx))]

    def drain_in_background(
        self, *, cancel: threading.Event | None = None
    ) -> Future[SyncSummary]:
        """Run :meth:`SyncEngine.drain_pending` on the pool (resume trigger)."""

        fut = self._executor.submit(self._engine.drain_pending, cancel=cancel or self._shutdown)
        fut.add_done_callback(_log_failure)
        return fut

    def close(self, *, wait: bool = True) -> None:
        """Stop drains between records and shut the worker pool down."""

        self._shutdown.set()
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> PipelineOrchestrator:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _log_failure(fut: Future) -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        _logger.error("Background pipeline task failed: %s", exc)


__all__ = ["DEFAULT_MAX_WORKERS", "PipelineListener", "PipelineOrchestrator"]
