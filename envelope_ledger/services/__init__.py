"""Services package."""

from envelope_ledger.services.storage import (
    Database,
    EnvelopeRow,
    ProductRow,
    SystemStateRow,
    TransactionRow,
)

__all__ = [
    "Database",
    "EnvelopeRow",
    "ProductRow",
    "SystemStateRow",
    "TransactionRow",
]
