"""ledger_db: database library for the notification ledger (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``ledger_db.models.ledger`` (re-exported for convenience)
- Engine/session helpers in ``ledger_db.client``
- Programmatic Alembic upgrade/downgrade in ``ledger_db.migrations``
"""

from __future__ import annotations

from .models.ledger import DEFAULT_CATEGORY, DEFAULT_MERCHANT, Base, LedgerTransaction

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "LedgerTransaction",
    "DEFAULT_CATEGORY",
    "DEFAULT_MERCHANT",
]
