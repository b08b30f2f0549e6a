# ruff: noqa: I001
"""
Alembic environment for the ``ledger_db`` library.

Database URL precedence:

1. ``config.attributes["database_url"]``: handed over programmatically by
   ``ledger_db.migrations`` (the ``autoledger migrate`` command and tests).
2. ``AUTOLEDGER_DATABASE_URL``, then ``DATABASE_URL`` (a ``.env`` found from
   the working directory is loaded first, without overriding the shell).
3. ``sqlalchemy.url`` in ``alembic.ini``.

SQLite databases are migrated in batch mode so column drops work.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from dotenv import find_dotenv, load_dotenv
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

import ledger_db

config = context.config
logger = logging.getLogger("alembic.env")

# Only when run through the `alembic` CLI with an ini file.
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _resolve_database_url() -> str:
    explicit = config.attributes.get("database_url")
    if explicit:
        return str(explicit)

    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)
    url = (
        os.getenv("AUTOLEDGER_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError(
            "No ledger database configured. Set AUTOLEDGER_DATABASE_URL (or "
            "DATABASE_URL), or 'sqlalchemy.url' in libs/db/alembic.ini."
        )
    return url


database_url = _resolve_database_url()
is_sqlite = make_url(database_url).get_backend_name() == "sqlite"


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=ledger_db.metadata,
        compare_type=True,
        render_as_batch=is_sqlite,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    _configure(url=database_url, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(database_url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()
    logger.info("Ledger migrations applied to %s", engine.url.render_as_string(hide_password=True))


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
