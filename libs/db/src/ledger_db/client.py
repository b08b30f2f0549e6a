"""SQLAlchemy engine/session helpers for the ledger database.

Usage
-----
from ledger_db.client import create_ledger_engine, make_session_factory, session_scope

engine = create_ledger_engine("sqlite+pysqlite:///autoledger.db")
factory = make_session_factory(engine)
with session_scope(factory) as s:
    s.execute(...)

Engines are constructed explicitly by the process entrypoint and passed to the
components that need them; nothing here caches a process-wide engine.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_ledger_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``database_url``.

    SQLite connections get ``foreign_keys`` enabled and a busy timeout so that
    concurrent writers from the pipeline's worker threads wait on the file lock
    instead of failing immediately.
    """

    if not database_url:
        raise RuntimeError("database URL is empty; cannot initialize ledger database")

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
            cur = dbapi_conn.cursor()
            try:
                cur.execute("PRAGMA foreign_keys = ON")
                cur.execute("PRAGMA busy_timeout = 30000")
            finally:
                cur.close()

        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "create_ledger_engine",
    "make_session_factory",
    "session_scope",
]
