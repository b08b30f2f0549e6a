"""Data models and enums for ``autoledger``.

Runtime values are frozen ``dataclass`` instances so they can be shared across
worker threads without copying. The on-disk classifier configuration is
validated with pydantic (see :class:`ClassifierConfigFile`).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from ledger_db.models.ledger import DEFAULT_CATEGORY, DEFAULT_MERCHANT
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Field bounds shared by the parser and the store.
MAX_RAW_TEXT_LEN: int = 200
MAX_MERCHANT_LEN: int = 50
# Exclusive upper bound of the NUMERIC(18, 2) amount column.
MAX_AMOUNT: Decimal = Decimal("1e16")

__all__ = [
    "DEFAULT_CATEGORY",
    "DEFAULT_MERCHANT",
    "MAX_AMOUNT",
    "MAX_MERCHANT_LEN",
    "MAX_RAW_TEXT_LEN",
    "TransactionKind",
    "SyncStatus",
    "NotificationEvent",
    "TransactionCandidate",
    "TransactionRecord",
    "SinkTarget",
    "TargetCheck",
    "SyncOutcome",
    "SyncAttempt",
    "SyncSummary",
    "PipelineOutcome",
    "PipelineResult",
    "CategoryRuleModel",
    "ClassifierConfigFile",
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TransactionKind(StrEnum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    UNKNOWN = "UNKNOWN"


class SyncStatus(StrEnum):
    """Delivery state of a stored record. ``SYNCED`` is terminal."""

    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Pipeline input and parse output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """One incoming notification-equivalent event.

    ``title`` and ``body`` are independently optional. ``key`` is an opaque
    handle of the originating event, echoed back in the pipeline result so the
    caller can dismiss it after delivery.
    """

    source_id: str
    title: str | None = None
    body: str | None = None
    key: str | None = None


@dataclass(frozen=True, slots=True)
class TransactionCandidate:
    """A parsed-but-not-yet-persisted transaction."""

    amount: Decimal
    raw_text: str
    merchant: str
    kind: TransactionKind
    category: str
    source_id: str


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """A persisted transaction as read back from the ledger store."""

    id: int
    amount: Decimal
    raw_text: str
    merchant: str
    kind: TransactionKind
    category: str
    source_id: str
    created_at: datetime
    sync_status: SyncStatus
    last_error: str | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Sync results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SinkTarget:
    """Where records are delivered: a spreadsheet id and a tab within it."""

    sheet_id: str
    tab_name: str = "Transactions"

    @property
    def is_configured(self) -> bool:
        return bool(self.sheet_id.strip()) and bool(self.tab_name.strip())


@dataclass(frozen=True, slots=True)
class TargetCheck:
    """Result of validating a target before saving it as the sink target."""

    target: SinkTarget
    display_name: str
    headers_ready: bool


class SyncOutcome(StrEnum):
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    # No target configured: no attempt made, record left untouched.
    NOT_CONFIGURED = "NOT_CONFIGURED"
    # Cancelled before the remote call started, or another worker already
    # holds the record: no attempt made, record left untouched.
    SKIPPED = "SKIPPED"


@dataclass(frozen=True, slots=True)
class SyncAttempt:
    """Result of :meth:`autoledger.sync.SyncEngine.sync_one`."""

    record: TransactionRecord
    outcome: SyncOutcome
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.outcome is SyncOutcome.DELIVERED


@dataclass(frozen=True, slots=True)
class SyncSummary:
    """Counts accumulated by one drain pass."""

    succeeded: int = 0
    failed: int = 0
    attempted: int = 0
    message: str | None = None
    cancelled: bool = False
    configured: bool = True


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


class PipelineOutcome(StrEnum):
    REJECTED_SOURCE = "REJECTED_SOURCE"
    NOT_A_TRANSACTION = "NOT_A_TRANSACTION"
    DELIVERED = "DELIVERED"
    SAVED_PENDING = "SAVED_PENDING"
    SAVED_FAILED = "SAVED_FAILED"


@dataclass(frozen=True, slots=True)
class PipelineResult:
    event: NotificationEvent
    outcome: PipelineOutcome
    record: TransactionRecord | None = None
    error: Exception | None = None

    @property
    def should_dismiss(self) -> bool:
        """True only once the record reached the remote sink."""

        return self.outcome is PipelineOutcome.DELIVERED


# ---------------------------------------------------------------------------
# Classifier configuration file (JSON)
# ---------------------------------------------------------------------------


class CategoryRuleModel(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid", str_strip_whitespace=True)

    keyword: str
    category: str

    @field_validator("keyword", "category")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be non-empty")
        return v


class ClassifierConfigFile(BaseModel):
    """Top-level schema for the classifier configuration JSON file.

    ``category_rules`` is a list (not an object) so that rule order, which
    decides ties, survives serialization.
    """

    model_config = ConfigDict(strict=True, extra="forbid", str_strip_whitespace=True)

    allowed_sources: list[str] = Field(default_factory=list)
    excluded_sources: list[str] = Field(default_factory=list)
    category_rules: list[CategoryRuleModel] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)

    @field_validator("allowed_sources", "excluded_sources", "categories")
    @classmethod
    def _drop_blank(cls, v: list[str]) -> list[str]:
        return [s.strip() for s in v if s.strip()]
