"""Audit logging package."""

from envelope_ledger.audit.logger import (
    AuditListener,
    AuditLogger,
    configure_logging,
    create_correlation_id,
)

__all__ = ["AuditListener", "AuditLogger", "configure_logging", "create_correlation_id"]
