"""Process settings resolved from the environment (and a local ``.env``)."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .models import SinkTarget
from .sink import extract_spreadsheet_id

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///autoledger.db"
DEFAULT_TAB_NAME = "Transactions"
DEFAULT_SINK_TIMEOUT_SEC = 15.0


@dataclass(frozen=True, slots=True)
class AppSettings:
    database_url: str = DEFAULT_DATABASE_URL
    sheet_target: SinkTarget | None = None
    sheets_token: str | None = None
    sink_timeout: float = DEFAULT_SINK_TIMEOUT_SEC
    classifier_config_path: Path | None = None
    log_level: str | None = None


def _get(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    dotenv: bool = True,
) -> AppSettings:
    """Build :class:`AppSettings` from ``env`` (defaults to ``os.environ``).

    When reading the process environment, ``.env`` in the working directory is
    loaded first without overriding variables that are already set. Raises
    ``ValueError`` for a malformed sheet URL or timeout.
    """

    if env is None:
        if dotenv:
            load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
        env = os.environ

    database_url = (
        _get(env, "AUTOLEDGER_DATABASE_URL") or _get(env, "DATABASE_URL") or DEFAULT_DATABASE_URL
    )

    target: SinkTarget | None = None
    raw_sheet = _get(env, "AUTOLEDGER_SHEET_ID")
    if raw_sheet:
        sheet_id = extract_spreadsheet_id(raw_sheet)
        if not sheet_id:
            raise ValueError(f"AUTOLEDGER_SHEET_ID is not a spreadsheet id or URL: {raw_sheet!r}")
        target = SinkTarget(sheet_id, _get(env, "AUTOLEDGER_SHEET_TAB") or DEFAULT_TAB_NAME)

    raw_timeout = _get(env, "AUTOLEDGER_SINK_TIMEOUT")
    if raw_timeout is None:
        timeout = DEFAULT_SINK_TIMEOUT_SEC
    else:
        try:
            timeout = float(raw_timeout)
        except ValueError as e:
            raise ValueError(f"AUTOLEDGER_SINK_TIMEOUT must be a number: {raw_timeout!r}") from e
        if timeout <= 0:
            raise ValueError("AUTOLEDGER_SINK_TIMEOUT must be positive")

    config_path = _get(env, "AUTOLEDGER_CLASSIFIER_CONFIG")
    return AppSettings(
        database_url=database_url,
        sheet_target=target,
        sheets_token=_get(env, "AUTOLEDGER_SHEETS_TOKEN"),
        sink_timeout=timeout,
        classifier_config_path=Path(config_path) if config_path else None,
        log_level=_get(env, "AUTOLEDGER_LOG_LEVEL"),
    )


__all__ = ["AppSettings", "DEFAULT_DATABASE_URL", "load_settings"]
