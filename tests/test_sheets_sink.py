import json
from urllib.parse import unquote

import httpx
import pytest

from autoledger.sheets import GoogleSheetsSink, a1_range
from autoledger.sink import (
    HEADER_ROW,
    LedgerSink,
    SinkAuthError,
    SinkError,
    SinkTimeoutError,
    extract_spreadsheet_id,
)


def _sink(handler, token="tok-123"):
    return GoogleSheetsSink(token, transport=httpx.MockTransport(handler))


def test_satisfies_sink_protocol():
    with _sink(lambda request: httpx.Response(200)) as sink:
        assert isinstance(sink, LedgerSink)


def test_append_row_posts_user_entered_values():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"updates": {"updatedRows": 1}})

    with _sink(handler) as sink:
        sink.append_row("sheet123", "Transactions", ["01/02/2025", "42.50", "Dunkin", "Food"])

    (req,) = seen
    assert req.method == "POST"
    assert "/v4/spreadsheets/sheet123/values/'Transactions'!A:D:append" in unquote(str(req.url))
    assert req.url.params["valueInputOption"] == "USER_ENTERED"
    assert req.url.params["insertDataOption"] == "INSERT_ROWS"
    assert req.headers["Authorization"] == "Bearer tok-123"
    assert json.loads(req.content) == {
        "majorDimension": "ROWS",
        "values": [["01/02/2025", "42.50", "Dunkin", "Food"]],
    }


def test_token_callable_is_read_per_request():
    tokens = iter(["first", "second"])
    auth: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        auth.append(request.headers["Authorization"])
        return httpx.Response(200, json={})

    with _sink(handler, token=lambda: next(tokens)) as sink:
        sink.append_row("s", "T", ["a"])
        sink.append_row("s", "T", ["b"])

    assert auth == ["Bearer first", "Bearer second"]


def test_missing_token_fails_without_network():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    with _sink(handler, token=None) as sink, pytest.raises(SinkAuthError, match="Not signed in"):
        sink.append_row("s", "T", ["a"])
    assert calls == []


@pytest.mark.parametrize("status", [401, 403])
def test_auth_statuses_map_to_auth_error(status):
    def handler(request: httpx.Request) -> httpx.Response:
        body = {"error": {"message": "Request had invalid credentials"}}
        return httpx.Response(status, json=body)

    with _sink(handler) as sink, pytest.raises(SinkAuthError, match="invalid credentials"):
        sink.append_row("s", "T", ["a"])


def test_server_error_carries_google_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": {"code": 400, "message": "Unable to parse range: Nope!A:D"}}
        )

    with _sink(handler) as sink, pytest.raises(SinkError, match="Unable to parse range") as exc:
        sink.append_row("s", "Nope", ["a"])
    assert not isinstance(exc.value, SinkAuthError)


def test_timeout_maps_to_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with _sink(handler) as sink, pytest.raises(SinkTimeoutError):
        sink.append_row("s", "T", ["a"])


def test_transport_error_maps_to_sink_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _sink(handler) as sink, pytest.raises(SinkError, match="connection refused"):
        sink.append_row("s", "T", ["a"])


def test_validate_target_returns_title():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["fields"] == "properties.title"
        return httpx.Response(200, json={"properties": {"title": "Budget 2025"}})

    with _sink(handler) as sink:
        assert sink.validate_target("sheet123") == "Budget 2025"


def test_validate_target_rejects_unexpected_payload():
    with _sink(lambda request: httpx.Response(200, json={"sheets": []})) as sink:
        with pytest.raises(SinkError, match="unexpected spreadsheet metadata"):
            sink.validate_target("sheet123")


def test_ensure_headers_writes_row_on_empty_tab():
    methods: list[str] = []
    written: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        if request.method == "GET":
            return httpx.Response(200, json={"range": "'Transactions'!A1:D1"})
        assert request.url.params["valueInputOption"] == "RAW"
        written.append(json.loads(request.content))
        return httpx.Response(200, json={})

    with _sink(handler) as sink:
        assert sink.ensure_headers("sheet123", "Transactions") is True

    assert methods == ["GET", "PUT"]
    assert written[0]["values"] == [list(HEADER_ROW)]


def test_ensure_headers_leaves_existing_row_alone():
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(200, json={"values": [["Date", "Amount"]]})

    with _sink(handler) as sink:
        assert sink.ensure_headers("sheet123", "Transactions") is False

    assert methods == ["GET"]


def test_a1_range_quotes_tab_names():
    assert a1_range("Bob's Budget", "A1:D1") == "'Bob''s Budget'!A1:D1"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("https://docs.google.com/spreadsheets/d/1AbC-d_9xyz/edit#gid=0", "1AbC-d_9xyz"),
        ("  1AbC-d_9xyz  ", "1AbC-d_9xyz"),
        ("https://docs.google.com/document/d/abc/edit", None),
        ("   ", None),
    ],
)
def test_extract_spreadsheet_id(value, expected):
    assert extract_spreadsheet_id(value) == expected
