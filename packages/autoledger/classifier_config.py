"""Classifier configuration: known sources, exclusions and keyword rules.

The parser never reads mutable state directly. Every classification call takes
one :class:`ClassifierSnapshot` (immutable) from a :class:`ClassifierConfig`
holder; updates build a new snapshot and swap the reference, so in-flight calls
keep the snapshot they started with and new calls see the update.

Exports
-------
- ``ClassifierSnapshot`` and ``CategoryRule``: immutable configuration values.
- ``ClassifierConfig``: the holder, with copy-on-write edit helpers and
  listener subscriptions.
- ``load_classifier_config(path)`` / ``save_classifier_config(...)``: JSON file
  I/O validated by :class:`~autoledger.models.ClassifierConfigFile`.
- ``parse_rule_string(...)`` / ``format_rule_string(...)``: the compact
  ``"keyword:Category,keyword:Category"`` form.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path

from pydantic import ValidationError

from .logging_setup import get_logger
from .models import CategoryRuleModel, ClassifierConfigFile

_logger = get_logger("autoledger.classifier_config")


# Package ids of the banking and payment apps accepted out of the box.
DEFAULT_FINANCIAL_SOURCES: frozenset[str] = frozenset(
    {
        "com.chase.sig.android",
        "com.wf.wellsfargomobile",
        "com.bankofamerica.cashpromobile",
        "com.citi.citimobile",
        "com.usaa.mobile.android.usaa",
        "com.konylabs.capitalone",
        "com.discover.mobile",
        "com.americanexpress.android.acctsvcs.us",
        "com.pnc.ecommerce.mobile",
        "com.venmo",
        "com.paypal.android.p2pmobile",
        "com.squareup.cash",
        "com.google.android.apps.walletnfcrel",
        "com.zellepay.zelle",
    }
)

# Case-insensitive substrings that mark an unknown source as financial.
GENERIC_SOURCE_TOKENS: tuple[str, ...] = ("bank", "pay", "wallet", "finance", "money")

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Coffee/Snacks",
    "Food",
    "Health/Medical",
    "Rent/Utilities",
    "Home",
    "Personal",
    "Transportation",
    "Dining/Fast Food",
    "Travel",
)


@dataclass(frozen=True, slots=True)
class CategoryRule:
    keyword: str
    category: str


def _rules(pairs: Iterable[tuple[str, str]]) -> tuple[CategoryRule, ...]:
    return tuple(CategoryRule(k, c) for k, c in pairs)


# Built-in keyword rules, consulted after the user's rules. Order decides ties:
# "uber eats" must precede "uber".
DEFAULT_CATEGORY_RULES: tuple[CategoryRule, ...] = _rules(
    [
        ("dunkin", "Coffee/Snacks"),
        ("starbucks", "Coffee/Snacks"),
        ("coffee", "Coffee/Snacks"),
        ("doordash", "Dining/Fast Food"),
        ("uber eats", "Dining/Fast Food"),
        ("grubhub", "Dining/Fast Food"),
        ("mcdonald", "Dining/Fast Food"),
        ("chipotle", "Dining/Fast Food"),
        ("burger", "Dining/Fast Food"),
        ("pizza", "Dining/Fast Food"),
        ("uber", "Transportation"),
        ("lyft", "Transportation"),
        ("chevron", "Transportation"),
        ("exxon", "Transportation"),
        ("parking", "Transportation"),
        ("whole foods", "Food"),
        ("trader joe", "Food"),
        ("safeway", "Food"),
        ("kroger", "Food"),
        ("grocery", "Food"),
        ("cvs", "Health/Medical"),
        ("walgreens", "Health/Medical"),
        ("pharmacy", "Health/Medical"),
        ("comcast", "Rent/Utilities"),
        ("electric", "Rent/Utilities"),
        ("utility", "Rent/Utilities"),
        ("home depot", "Home"),
        ("ikea", "Home"),
        ("airbnb", "Travel"),
        ("hotel", "Travel"),
        ("airline", "Travel"),
    ]
)


@dataclass(frozen=True, slots=True)
class ClassifierSnapshot:
    """Immutable, point-in-time classifier configuration.

    ``allowed_sources`` and ``category_rules`` hold only the user's additions;
    the effective views merge in the built-in defaults. User rules come first,
    so a user keyword shadows a built-in one.
    """

    allowed_sources: frozenset[str] = frozenset()
    excluded_sources: frozenset[str] = frozenset()
    category_rules: tuple[CategoryRule, ...] = ()
    categories: tuple[str, ...] = ()
    include_defaults: bool = True
    _effective_rules: tuple[CategoryRule, ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        merged: list[CategoryRule] = []
        seen: set[str] = set()
        defaults = DEFAULT_CATEGORY_RULES if self.include_defaults else ()
        for rule in (*self.category_rules, *defaults):
            key = rule.keyword.lower()
            if key in seen:
                continue
            seen.add(key)
            merged.append(CategoryRule(key, rule.category))
        object.__setattr__(self, "_effective_rules", tuple(merged))

    @property
    def effective_allowed_sources(self) -> frozenset[str]:
        if self.include_defaults:
            return DEFAULT_FINANCIAL_SOURCES | self.allowed_sources
        return self.allowed_sources

    @property
    def effective_rules(self) -> tuple[CategoryRule, ...]:
        return self._effective_rules

    @property
    def effective_categories(self) -> tuple[str, ...]:
        base = DEFAULT_CATEGORIES if self.include_defaults else ()
        return tuple(dict.fromkeys((*base, *self.categories)))


SnapshotListener = Callable[[ClassifierSnapshot], None]


class ClassifierConfig:
    """Holder for the current :class:`ClassifierSnapshot`.

    Reads are lock-free (a single attribute load). Writers serialize on a lock
    so concurrent edits do not lose each other's changes. Listeners are called
    on the writer's thread after the swap.
    """

    def __init__(self, snapshot: ClassifierSnapshot | None = None) -> None:
        self._snapshot = snapshot or ClassifierSnapshot()
        self._write_lock = threading.Lock()
        self._listeners: list[SnapshotListener] = []

    def snapshot(self) -> ClassifierSnapshot:
        return self._snapshot

    def replace(self, snapshot: ClassifierSnapshot) -> ClassifierSnapshot:
        """Swap in ``snapshot`` wholesale (a pushed configuration update)."""

        return self._edit(lambda _current: snapshot)

    def _edit(self, fn: Callable[[ClassifierSnapshot], ClassifierSnapshot]) -> ClassifierSnapshot:
        with self._write_lock:
            updated = fn(self._snapshot)
            self._snapshot = updated
            listeners = list(self._listeners)
        _logger.debug(
            "Classifier config updated: %d allowed, %d excluded, %d rules",
            len(updated.allowed_sources),
            len(updated.excluded_sources),
            len(updated.category_rules),
        )
        for listener in listeners:
            try:
                listener(updated)
            except Exception:
                _logger.exception("Classifier config listener failed")
        return updated

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for future swaps; returns an unsubscribe callable."""

        with self._write_lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._write_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # ---- copy-on-write edit helpers -----------------------------------------

    def allow_source(self, source_id: str) -> ClassifierSnapshot:
        return self._edit(lambda s: replace(s, allowed_sources=s.allowed_sources | {source_id}))

    def disallow_source(self, source_id: str) -> ClassifierSnapshot:
        return self._edit(lambda s: replace(s, allowed_sources=s.allowed_sources - {source_id}))

    def exclude_source(self, source_id: str) -> ClassifierSnapshot:
        return self._edit(
            lambda s: replace(s, excluded_sources=s.excluded_sources | {source_id})
        )

    def unexclude_source(self, source_id: str) -> ClassifierSnapshot:
        return self._edit(
            lambda s: replace(s, excluded_sources=s.excluded_sources - {source_id})
        )

    def add_rule(self, keyword: str, category: str) -> ClassifierSnapshot:
        """Add or re-point a keyword rule. Keywords are stored lower-case; an
        existing keyword keeps its position."""

        key = keyword.strip().lower()
        if not key or not category.strip():
            raise ValueError("keyword and category must be non-empty")

        def _apply(s: ClassifierSnapshot) -> ClassifierSnapshot:
            rules = list(s.category_rules)
            for i, rule in enumerate(rules):
                if rule.keyword.lower() == key:
                    rules[i] = CategoryRule(key, category.strip())
                    break
            else:
                rules.append(CategoryRule(key, category.strip()))
            return replace(s, category_rules=tuple(rules))

        return self._edit(_apply)

    def remove_rule(self, keyword: str) -> ClassifierSnapshot:
        key = keyword.strip().lower()
        return self._edit(
            lambda s: replace(
                s,
                category_rules=tuple(r for r in s.category_rules if r.keyword.lower() != key),
            )
        )

    def add_category(self, name: str) -> ClassifierSnapshot:
        """Append a user category; adding an existing name changes nothing."""

        name = name.strip()
        if not name:
            raise ValueError("category must be non-empty")
        return self._edit(
            lambda s: s
            if name in s.categories
            else replace(s, categories=(*s.categories, name))
        )

    def remove_category(self, name: str) -> ClassifierSnapshot:
        """Drop a user category. Built-in categories and rules are untouched."""

        name = name.strip()
        return self._edit(
            lambda s: replace(s, categories=tuple(c for c in s.categories if c != name))
        )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def parse_rule_string(raw: str) -> tuple[CategoryRule, ...]:
    """Parse ``"keyword1:Category1,keyword2:Category2"``.

    Entries without a ``:`` are skipped; a repeated keyword keeps its first
    position but takes the last category.
    """

    ordered: dict[str, str] = {}
    for entry in raw.split(","):
        parts = entry.split(":", 1)
        if len(parts) != 2:
            continue
        keyword, category = parts[0].strip().lower(), parts[1].strip()
        if keyword and category:
            ordered[keyword] = category
    return tuple(CategoryRule(k, c) for k, c in ordered.items())


def format_rule_string(rules: Iterable[CategoryRule]) -> str:
    return ",".join(f"{r.keyword}:{r.category}" for r in rules)


def snapshot_from_file_model(model: ClassifierConfigFile) -> ClassifierSnapshot:
    return ClassifierSnapshot(
        allowed_sources=frozenset(model.allowed_sources),
        excluded_sources=frozenset(model.excluded_sources),
        category_rules=tuple(
            CategoryRule(r.keyword.lower(), r.category) for r in model.category_rules
        ),
        categories=tuple(model.categories),
    )


def load_classifier_config(path: str | os.PathLike[str]) -> ClassifierSnapshot:
    """Read and validate a classifier configuration JSON file.

    Raises ``ValueError`` with the file path in the message when the file is
    not valid JSON or does not match the schema.
    """

    p = Path(path)
    try:
        model = ClassifierConfigFile.model_validate_json(p.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise ValueError(f"invalid classifier config {p}: {e}") from e
    return snapshot_from_file_model(model)


def save_classifier_config(snapshot: ClassifierSnapshot, path: str | os.PathLike[str]) -> None:
    """Write ``snapshot`` (user additions only) as JSON.

    Writes go to a ``.tmp`` sibling first and are moved into place with
    ``os.replace``.
    """

    model = ClassifierConfigFile(
        allowed_sources=sorted(snapshot.allowed_sources),
        excluded_sources=sorted(snapshot.excluded_sources),
        category_rules=[
            CategoryRuleModel(keyword=r.keyword, category=r.category)
            for r in snapshot.category_rules
        ],
        categories=list(snapshot.categories),
    )
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(model.model_dump(), indent=2) + "\n", encoding="utf-8")
    os.replace(tmp, p)


__all__ = [
    "DEFAULT_CATEGORIES",
    "DEFAULT_CATEGORY_RULES",
    "DEFAULT_FINANCIAL_SOURCES",
    "GENERIC_SOURCE_TOKENS",
    "CategoryRule",
    "ClassifierConfig",
    "ClassifierSnapshot",
    "format_rule_string",
    "load_classifier_config",
    "parse_rule_string",
    "save_classifier_config",
    "snapshot_from_file_model",
]
