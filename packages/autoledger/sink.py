"""Remote sink contract: where ledger records are delivered.

A sink appends one row per record to a spreadsheet tab. Implementations raise
:class:`SinkError` subclasses on failure and must bound every network call with
a timeout. See :mod:`autoledger.sheets` for the Google Sheets client.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import tzinfo
from typing import Protocol, runtime_checkable

from .models import TransactionRecord

# Written to row 1 of an empty tab by ``ensure_headers``.
HEADER_ROW: tuple[str, ...] = ("Date", "Amount", "Description", "Category")

_SHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9\-_]+)")


class SinkError(RuntimeError):
    """Delivery to the remote sink failed."""


class SinkAuthError(SinkError):
    """Missing or rejected credentials."""


class SinkTimeoutError(SinkError):
    """The remote call did not complete within the configured timeout."""


class NotConfiguredError(SinkError):
    """No spreadsheet/tab is configured; nothing was attempted."""


@runtime_checkable
class LedgerSink(Protocol):
    def append_row(self, sheet_id: str, tab_name: str, columns: Sequence[str]) -> None:
        """Append ``columns`` as a new row at the end of ``tab_name``."""
        ...

    def validate_target(self, sheet_id: str) -> str:
        """Return the spreadsheet's display name, raising if inaccessible."""
        ...

    def ensure_headers(self, sheet_id: str, tab_name: str) -> bool:
        """Write :data:`HEADER_ROW` if the tab is empty; True when written."""
        ...


def format_row(record: TransactionRecord, *, tz: tzinfo | None = None) -> list[str]:
    """Build ``[MM/DD/YYYY, amount, merchant, category]`` for ``record``.

    The date is the capture time converted to ``tz`` (local time when None).
    """

    created = record.created_at.astimezone(tz)
    return [
        created.strftime("%m/%d/%Y"),
        f"{record.amount:.2f}",
        record.merchant,
        record.category,
    ]


def extract_spreadsheet_id(url_or_id: str) -> str | None:
    """Accept a bare id or a Google Sheets URL and return the id.

    ``https://docs.google.com/spreadsheets/d/<ID>/edit`` -> ``<ID>``. Returns
    ``None`` for a URL without an id segment or a blank string.
    """

    s = url_or_id.strip()
    if not s:
        return None
    if "/" not in s:
        return s
    m = _SHEET_URL_RE.search(s)
    return m.group(1) if m else None


__all__ = [
    "HEADER_ROW",
    "LedgerSink",
    "NotConfiguredError",
    "SinkAuthError",
    "SinkError",
    "SinkTimeoutError",
    "extract_spreadsheet_id",
    "format_row",
]
