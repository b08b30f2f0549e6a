# ruff: noqa: E402, I001
"""Pytest configuration shared by the ``autoledger`` suite.

Settings are read from ``AUTOLEDGER_*`` environment variables and a ``.env``
in the working directory. To keep tests hermetic, an autouse fixture clears
those variables and runs every test from its own temporary directory.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Make sure the workspace `packages/` and `libs/db/src` dirs are importable
_ROOT = Path(__file__).resolve().parents[1]
_PATHS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _PATHS if str(p) not in sys.path]

from autoledger.ledger import LedgerStore
from autoledger.models import SinkTarget

from tests.helpers.db import FixedClock, bootstrap_sqlite_db
from tests.helpers.sink_stub import RecordingSink


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ambient ``AUTOLEDGER_*`` settings and run from ``tmp_path``."""

    for name in list(os.environ):
        if name.startswith("AUTOLEDGER_") or name == "DATABASE_URL":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.db")


@pytest.fixture
def store(db_url: str, clock: FixedClock) -> LedgerStore:
    return LedgerStore.from_url(db_url, clock=clock)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def target() -> SinkTarget:
    return SinkTarget(sheet_id="sheet123", tab_name="Transactions")
