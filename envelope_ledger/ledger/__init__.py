"""
Ledger Engine Components

Each component owns one slice of state:
- EnvelopeStore: envelope lifecycle and lookup
- TransactionLedger: the only path that moves a balance
- ProductCatalog: fixed-price items charged through the ledger
- MonthlyProcessor: the once-a-month refill and retention run
- ReportEngine: read-only spend pace figures
"""

from envelope_ledger.ledger.envelopes import EnvelopeStore
from envelope_ledger.ledger.monthly import MonthlyProcessor, retention_cutoff
from envelope_ledger.ledger.products import ProductCatalog
from envelope_ledger.ledger.report import ReportEngine, classify
from envelope_ledger.ledger.transactions import TransactionLedger, month_key, utcnow

__all__ = [
    "EnvelopeStore",
    "MonthlyProcessor",
    "ProductCatalog",
    "ReportEngine",
    "TransactionLedger",
    "classify",
    "month_key",
    "retention_cutoff",
    "utcnow",
]
