"""Composition root for ``autoledger``.

:func:`build_services` constructs every long-lived component once, from an
:class:`~autoledger.settings.AppSettings`, and wires them together. Hosts (the
CLI, a notification listener service, tests) hold the returned
:class:`Services` and pass its members on explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo

from .classifier_config import ClassifierConfig, load_classifier_config
from .ledger import LedgerStore
from .logging_setup import get_logger
from .parser import NotificationParser
from .pipeline import DEFAULT_MAX_WORKERS, PipelineListener, PipelineOrchestrator
from .settings import AppSettings
from .sheets import GoogleSheetsSink
from .sink import LedgerSink
from .sync import SyncEngine

_logger = get_logger("autoledger.api")


@dataclass(slots=True)
class Services:
    config: ClassifierConfig
    parser: NotificationParser
    store: LedgerStore
    sink: LedgerSink
    engine: SyncEngine
    pipeline: PipelineOrchestrator

    def close(self) -> None:
        self.pipeline.close()
        close = getattr(self.sink, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> Services:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def build_services(
    settings: AppSettings,
    *,
    sink: LedgerSink | None = None,
    listener: PipelineListener | None = None,
    create_schema: bool = False,
    max_workers: int = DEFAULT_MAX_WORKERS,
    tz: tzinfo | None = None,
) -> Services:
    """Wire config, store, sink, sync engine and pipeline from ``settings``.

    ``sink`` overrides the Google Sheets client (tests pass a stub).
    ``create_schema`` builds tables from the ORM metadata instead of relying on
    migrations having been applied.
    """

    config = ClassifierConfig()
    if settings.classifier_config_path is not None:
        config.replace(load_classifier_config(settings.classifier_config_path))
        _logger.info("Loaded classifier config from %s", settings.classifier_config_path)

    store = LedgerStore.from_url(settings.database_url, create_schema=create_schema)
    if sink is None:
        sink = GoogleSheetsSink(settings.sheets_token, timeout=settings.sink_timeout)
    engine = SyncEngine(store, sink, settings.sheet_target, tz=tz)
    pipeline = PipelineOrchestrator(
        config, store, engine, listener=listener, max_workers=max_workers
    )
    return Services(
        config=config,
        parser=NotificationParser(config),
        store=store,
        sink=sink,
        engine=engine,
        pipeline=pipeline,
    )


__all__ = ["Services", "build_services"]
