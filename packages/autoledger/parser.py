"""Notification classifier and transaction extractor.

Turns ``(title, body, source_id)`` into a :class:`TransactionCandidate` or
``None``. All functions are pure given a :class:`ClassifierSnapshot`; the
:class:`NotificationParser` wrapper takes a fresh snapshot from a live
:class:`ClassifierConfig` on every call.

Only the amount is load-bearing: without a recognizable amount the event is not
a transaction. Every other field degrades to a default.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .classifier_config import GENERIC_SOURCE_TOKENS, ClassifierConfig, ClassifierSnapshot
from .logging_setup import get_logger
from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_MERCHANT,
    MAX_AMOUNT,
    MAX_MERCHANT_LEN,
    MAX_RAW_TEXT_LEN,
    TransactionCandidate,
    TransactionKind,
)

_logger = get_logger("autoledger.parser")

# ---- Patterns ----------------------------------------------------------------

# First match wins: "$1,234.56", "USD 1,234.56", "1,234.56 dollars" / "1234 USD".
AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\$\s?([\d,]+\.?\d{0,2})"),
    re.compile(r"USD\s?([\d,]+\.?\d{0,2})"),
    re.compile(r"([\d,]+\.?\d{0,2})\s?(?:dollars?|USD)", re.IGNORECASE),
)

# Checked in order; all debit keywords are tried before any credit keyword.
DEBIT_KEYWORDS: tuple[str, ...] = (
    "spent",
    "paid",
    "charged",
    "debited",
    "purchase",
    "purchased",
    "sent",
    "withdrawn",
    "withdrawal",
    "payment",
    "debit",
    "charge",
)

CREDIT_KEYWORDS: tuple[str, ...] = (
    "received",
    "credited",
    "deposited",
    "refund",
    "cashback",
    "deposit",
    "credit",
    "added",
)

_MERCHANT_CHARS = r"[A-Za-z0-9\s&'.#\-]"


# ---- Merchant extractor strategies -------------------------------------------

MerchantExtractor = Callable[[str], str | None]


def _clip(value: str, limit: int = MAX_MERCHANT_LEN) -> str | None:
    s = value.strip()[:limit].rstrip()
    return s or None


class RegexMerchantExtractor:
    """Return the first capture group of ``pattern`` (trimmed, clipped)."""

    __slots__ = ("name", "pattern")

    def __init__(self, name: str, pattern: str, flags: int = re.IGNORECASE) -> None:
        self.name = name
        self.pattern = re.compile(pattern, flags)

    def __call__(self, text: str) -> str | None:
        m = self.pattern.search(text)
        if m is None:
            return None
        return _clip(m.group(1))

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"RegexMerchantExtractor({self.name!r})"


def text_before_dollar(text: str) -> str | None:
    """Everything before the first ``$`` (e.g. ``"Starbucks $4.50"``)."""

    idx = text.find("$")
    if idx <= 0:
        return None
    return _clip(text[:idx])


def full_text(text: str) -> str | None:
    return _clip(text)


MERCHANT_EXTRACTORS: tuple[MerchantExtractor, ...] = (
    # "... was used at SHELL OIL 123 in AUSTIN TX USA for $45.00"
    RegexMerchantExtractor(
        "card_used_at",
        r"\bused at\s+(.+?)\s+in\s+[A-Za-z .'\-]+?\s+USA\s+for\b",
    ),
    # "at Dunkin #123", "to John Smith on 01/02", "@ Blue Bottle."
    RegexMerchantExtractor(
        "preposition",
        rf"(?:\b(?:at|to|from)\s+|@\s*)({_MERCHANT_CHARS}+?)(?:\.|,|\s+on\b|\s+for\b|\s*$)",
    ),
    # "Merchant: ACME CORP"
    RegexMerchantExtractor(
        "labelled",
        rf"\b(?:merchant|store|shop):\s*({_MERCHANT_CHARS}+)",
    ),
    text_before_dollar,
    full_text,
)


# ---- Field extraction ----------------------------------------------------------


def combine_text(title: str | None, body: str | None) -> str:
    """Join the present parts with a single space."""

    return " ".join(part for part in (title, body) if part is not None)


def extract_amount(text: str) -> Decimal | None:
    """Return the positive amount of the first matching pattern, else ``None``.

    Only the first matching pattern is consulted; if its capture is not a
    positive number below :data:`MAX_AMOUNT` the text has no usable amount.
    """

    for pattern in AMOUNT_PATTERNS:
        m = pattern.search(text)
        if m is None:
            continue
        raw = m.group(1).replace(",", "")
        try:
            amount = Decimal(raw).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        except InvalidOperation:
            return None
        if amount <= 0 or amount >= MAX_AMOUNT:
            return None
        return amount
    return None


def determine_kind(text: str) -> TransactionKind:
    lower = text.lower()
    if any(k in lower for k in DEBIT_KEYWORDS):
        return TransactionKind.DEBIT
    if any(k in lower for k in CREDIT_KEYWORDS):
        return TransactionKind.CREDIT
    return TransactionKind.UNKNOWN


def extract_merchant(
    text: str, extractors: Sequence[MerchantExtractor] = MERCHANT_EXTRACTORS
) -> str:
    for extractor in extractors:
        merchant = extractor(text)
        if merchant:
            return merchant
    return DEFAULT_MERCHANT


def resolve_category(text: str, snapshot: ClassifierSnapshot) -> str:
    lower = text.lower()
    for rule in snapshot.effective_rules:
        if rule.keyword in lower:
            return rule.category
    return DEFAULT_CATEGORY


# ---- Public contract -----------------------------------------------------------


def classify_source(source_id: str, snapshot: ClassifierSnapshot) -> bool:
    """Decide whether ``source_id`` is a financial source.

    Exclusion beats everything; then the explicit allow set; then a
    case-insensitive generic-token match.
    """

    if source_id in snapshot.excluded_sources:
        return False
    if source_id in snapshot.effective_allowed_sources:
        return True
    lower = source_id.lower()
    return any(token in lower for token in GENERIC_SOURCE_TOKENS)


def parse_notification(
    title: str | None,
    body: str | None,
    source_id: str,
    snapshot: ClassifierSnapshot,
) -> TransactionCandidate | None:
    """Extract a candidate from one event, or ``None`` when it has no amount.

    Source admission is not re-checked here; callers run
    :func:`classify_source` first.
    """

    text = combine_text(title, body)
    if not text.strip():
        return None

    amount = extract_amount(text)
    if amount is None:
        _logger.debug("No amount in notification from %s: %r", source_id, text[:80])
        return None

    return TransactionCandidate(
        amount=amount,
        raw_text=text[:MAX_RAW_TEXT_LEN],
        merchant=extract_merchant(text),
        kind=determine_kind(text),
        category=resolve_category(text, snapshot),
        source_id=source_id,
    )


class NotificationParser:
    """Parser bound to a live :class:`ClassifierConfig`.

    Each call reads exactly one snapshot, so a configuration swap mid-call
    cannot mix old and new rules.
    """

    def __init__(self, config: ClassifierConfig) -> None:
        self._config = config

    @property
    def config(self) -> ClassifierConfig:
        return self._config

    def classify(self, source_id: str) -> bool:
        return classify_source(source_id, self._config.snapshot())

    def parse(
        self, title: str | None, body: str | None, source_id: str
    ) -> TransactionCandidate | None:
        return parse_notification(title, body, source_id, self._config.snapshot())


__all__ = [
    "AMOUNT_PATTERNS",
    "CREDIT_KEYWORDS",
    "DEBIT_KEYWORDS",
    "MERCHANT_EXTRACTORS",
    "NotificationParser",
    "RegexMerchantExtractor",
    "classify_source",
    "combine_text",
    "determine_kind",
    "extract_amount",
    "extract_merchant",
    "full_text",
    "parse_notification",
    "resolve_category",
    "text_before_dollar",
]
