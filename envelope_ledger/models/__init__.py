"""
Data Models Package

This package contains all Pydantic models returned by the Envelope Ledger engine.
All data leaving the engine conforms to these schemas.
"""

from envelope_ledger.models.ledger import (
    Envelope,
    EnvelopeSeed,
    Product,
    ProductConsumeResult,
    RecordResult,
    SeedResult,
    Transaction,
    TransactionKind,
)
from envelope_ledger.models.report import (
    AlreadyProcessed,
    EnvelopeDetail,
    EnvelopeRollover,
    EnvelopeStat,
    MonthlySummary,
    PaceStatus,
    ProcessorState,
)
from envelope_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Envelope",
    "EnvelopeSeed",
    "Product",
    "ProductConsumeResult",
    "RecordResult",
    "SeedResult",
    "Transaction",
    "TransactionKind",
    # Monthly and report models
    "AlreadyProcessed",
    "EnvelopeDetail",
    "EnvelopeRollover",
    "EnvelopeStat",
    "MonthlySummary",
    "PaceStatus",
    "ProcessorState",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
