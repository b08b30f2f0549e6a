"""Programmatic access to the Alembic environment under ``libs/db/alembic``."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

# libs/db/src/ledger_db/migrations.py -> libs/db/alembic
SCRIPT_LOCATION = Path(__file__).resolve().parents[2] / "alembic"


def alembic_config(database_url: str) -> Config:
    """Build an Alembic ``Config`` bound to ``database_url`` without an ini file."""

    cfg = Config()
    cfg.set_main_option("script_location", str(SCRIPT_LOCATION))
    cfg.attributes["database_url"] = database_url
    return cfg


def upgrade(database_url: str, revision: str = "head") -> None:
    command.upgrade(alembic_config(database_url), revision)


def downgrade(database_url: str, revision: str) -> None:
    command.downgrade(alembic_config(database_url), revision)


__all__ = ["SCRIPT_LOCATION", "alembic_config", "downgrade", "upgrade"]
