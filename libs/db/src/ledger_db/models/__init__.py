"""ORM models registry for the ledger database."""

from .ledger import DEFAULT_CATEGORY, DEFAULT_MERCHANT, Base, LedgerTransaction

__all__ = [
    "Base",
    "LedgerTransaction",
    "DEFAULT_CATEGORY",
    "DEFAULT_MERCHANT",
]
