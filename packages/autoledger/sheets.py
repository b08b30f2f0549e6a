"""Google Sheets v4 REST client implementing :class:`~autoledger.sink.LedgerSink`.

Authentication is handled elsewhere: the client is given an OAuth access token
(or a callable returning the current one). Every request is bounded by the
configured timeout; transport and HTTP failures are mapped onto the
:mod:`autoledger.sink` error types so the sync engine can record them.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any
from urllib.parse import quote

import httpx

from .logging_setup import get_logger
from .sink import HEADER_ROW, SinkAuthError, SinkError, SinkTimeoutError

_logger = get_logger("autoledger.sheets")

DEFAULT_BASE_URL = "https://sheets.googleapis.com"
DEFAULT_TIMEOUT_SEC: float = 15.0

TokenSource = str | Callable[[], str | None] | None


def a1_range(tab_name: str, cells: str) -> str:
    """Quote ``tab_name`` for A1 notation: ``'My Tab'!A:D``."""

    return "'" + tab_name.replace("'", "''") + "'!" + cells


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return resp.reason_phrase


class GoogleSheetsSink:
    """Append-only Sheets client.

    Parameters
    ----------
    token:
        An access token, or a zero-argument callable returning one. ``None`` (or
        a callable returning ``None``) means not signed in; every call then
        raises :class:`SinkAuthError` without touching the network.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token: TokenSource = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        base_url: str = DEFAULT_BASE_URL,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._token = token
        self._timeout = timeout
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GoogleSheetsSink:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---- plumbing ------------------------------------------------------------

    def _access_token(self) -> str:
        token = self._token() if callable(self._token) else self._token
        if not token:
            raise SinkAuthError("Not signed in to Google: no access token configured")
        return token

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            resp = self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise SinkTimeoutError(
                f"Sheets request timed out after {self._timeout:g}s: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise SinkError(f"Sheets request failed: {e}") from e

        if resp.status_code in (401, 403):
            raise SinkAuthError(
                f"Sheets API denied access ({resp.status_code}): {_error_message(resp)}"
            )
        if resp.status_code >= 400:
            raise SinkError(f"Sheets API error {resp.status_code}: {_error_message(resp)}")
        return resp

    @staticmethod
    def _values_path(sheet_id: str, a1: str, suffix: str = "") -> str:
        return f"/v4/spreadsheets/{quote(sheet_id, safe='')}/values/{quote(a1, safe='')}{suffix}"

    # ---- LedgerSink ----------------------------------------------------------

    def append_row(self, sheet_id: str, tab_name: str, columns: Sequence[str]) -> None:
        self._request(
            "POST",
            self._values_path(sheet_id, a1_range(tab_name, "A:D"), ":append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": [list(columns)]},
        )
        _logger.debug("Appended row to %s/%s", sheet_id, tab_name)

    def validate_target(self, sheet_id: str) -> str:
        resp = self._request(
            "GET",
            f"/v4/spreadsheets/{quote(sheet_id, safe='')}",
            params={"fields": "properties.title"},
        )
        try:
            return str(resp.json()["properties"]["title"])
        except (ValueError, KeyError, TypeError) as e:
            raise SinkError(f"unexpected spreadsheet metadata shape for {sheet_id}") from e

    def ensure_headers(self, sheet_id: str, tab_name: str) -> bool:
        header_range = a1_range(tab_name, "A1:D1")
        resp = self._request("GET", self._values_path(sheet_id, header_range))
        try:
            existing = resp.json().get("values")
        except ValueError:
            existing = None
        if existing:
            return False
        self._request(
            "PUT",
            self._values_path(sheet_id, header_range),
            params={"valueInputOption": "RAW"},
            json={"majorDimension": "ROWS", "values": [list(HEADER_ROW)]},
        )
        _logger.info("Wrote header row to %s/%s", sheet_id, tab_name)
        return True


__all__ = ["DEFAULT_BASE_URL", "DEFAULT_TIMEOUT_SEC", "GoogleSheetsSink", "a1_range"]
