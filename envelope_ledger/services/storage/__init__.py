"""
Storage Services Package

SQLAlchemy-backed persistence for the ledger. SQLite is the default
backend; any SQLAlchemy URL with partial-index support works.
"""

from envelope_ledger.services.storage.database import Database
from envelope_ledger.services.storage.tables import (
    Base,
    EnvelopeRow,
    Money,
    ProductRow,
    SystemStateRow,
    TransactionRow,
    UTCDateTime,
)

__all__ = [
    "Base",
    "Database",
    "EnvelopeRow",
    "Money",
    "ProductRow",
    "SystemStateRow",
    "TransactionRow",
    "UTCDateTime",
]
