"""Public interface for the ``autoledger`` package.

This module exposes the components of the notification-to-ledger pipeline and
its public models/types as the stable import surface. There is no runtime
logic here, only symbol re-exports.
"""

from .api import Services, build_services
from .classifier_config import (
    CategoryRule,
    ClassifierConfig,
    ClassifierSnapshot,
    load_classifier_config,
    parse_rule_string,
    save_classifier_config,
)
from .ledger import (
    InvalidStatusTransition,
    LedgerError,
    LedgerStorageError,
    LedgerStore,
    RecordNotFound,
)
from .models import (
    NotificationEvent,
    PipelineOutcome,
    PipelineResult,
    SinkTarget,
    SyncAttempt,
    SyncOutcome,
    SyncStatus,
    SyncSummary,
    TransactionCandidate,
    TransactionKind,
    TransactionRecord,
)
from .parser import NotificationParser, classify_source, parse_notification
from .pipeline import PipelineListener, PipelineOrchestrator
from .settings import AppSettings, load_settings
from .sheets import GoogleSheetsSink
from .sink import (
    LedgerSink,
    NotConfiguredError,
    SinkAuthError,
    SinkError,
    SinkTimeoutError,
)
from .sync import SyncEngine

__all__ = [
    # Composition
    "AppSettings",
    "Services",
    "build_services",
    "load_settings",
    # Components
    "ClassifierConfig",
    "LedgerStore",
    "NotificationParser",
    "PipelineListener",
    "PipelineOrchestrator",
    "SyncEngine",
    "GoogleSheetsSink",
    "LedgerSink",
    # Functions
    "classify_source",
    "parse_notification",
    "parse_rule_string",
    "load_classifier_config",
    "save_classifier_config",
    # Models / types
    "CategoryRule",
    "ClassifierSnapshot",
    "NotificationEvent",
    "PipelineOutcome",
    "PipelineResult",
    "SinkTarget",
    "SyncAttempt",
    "SyncOutcome",
    "SyncStatus",
    "SyncSummary",
    "TransactionCandidate",
    "TransactionKind",
    "TransactionRecord",
    # Errors
    "InvalidStatusTransition",
    "LedgerError",
    "LedgerStorageError",
    "RecordNotFound",
    "NotConfiguredError",
    "SinkAuthError",
    "SinkError",
    "SinkTimeoutError",
]
