"""
Audit Models for Envelope Ledger

Every mutation of ledger state produces an audit event.
This provides:
1. Complete traceability of balance changes
2. Debugging information when things go wrong
3. A single event stream that collaborators (caches) can subscribe to

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Envelopes
    ENVELOPE_CREATED = "envelope_created"
    ENVELOPE_REENABLED = "envelope_reenabled"
    ENVELOPE_UPDATED = "envelope_updated"
    ENVELOPE_DELETED = "envelope_deleted"
    ENVELOPES_SEEDED = "envelopes_seeded"

    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"
    OVERDRAFT = "overdraft"

    # Products
    PRODUCT_ADDED = "product_added"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"
    PRODUCT_CONSUMED = "product_consumed"

    # Monthly processing
    MONTHLY_PROCESSED = "monthly_processed"
    MONTHLY_ALREADY_PROCESSED = "monthly_already_processed"
    MONTHLY_FAILED = "monthly_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'envelope', 'product', 'transaction')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[str] = Field(
        default=None,
        description="ID to correlate related events (e.g., one command invocation)"
    )

    # Who did it
    user_id: Optional[str] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": self.correlation_id,
            "user_id": self.user_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.envelope_created(envelope_id, name, user_id)
        event = AuditEventBuilder.transaction_recorded(...)
    """

    @staticmethod
    def envelope_created(
        envelope_id: int,
        name: str,
        owner: Optional[str],
        allocation: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENVELOPE_CREATED,
            entity_type="envelope",
            entity_id=envelope_id,
            description=f"Envelope created: {name}",
            details={
                "name": name,
                "owner": owner,
                "allocation": _money(allocation),
            },
        )

    @staticmethod
    def envelope_reenabled(
        envelope_id: int,
        name: str,
        owner: Optional[str],
        allocation: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENVELOPE_REENABLED,
            entity_type="envelope",
            entity_id=envelope_id,
            description=f"Envelope re-enabled: {name}",
            details={
                "name": name,
                "owner": owner,
                "allocation": _money(allocation),
            },
        )

    @staticmethod
    def envelope_updated(
        envelope_id: int,
        name: str,
        changes: dict[str, Any],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENVELOPE_UPDATED,
            entity_type="envelope",
            entity_id=envelope_id,
            description=f"Envelope updated: {name}",
            details={
                "name": name,
                "changes": {key: str(value) for key, value in changes.items()},
            },
        )

    @staticmethod
    def envelope_deleted(
        envelope_id: int,
        name: str,
        owner: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENVELOPE_DELETED,
            entity_type="envelope",
            entity_id=envelope_id,
            description=f"Envelope soft-deleted: {name}",
            details={
                "name": name,
                "owner": owner,
            },
        )

    @staticmethod
    def envelopes_seeded(
        applied: list[str],
        skipped: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENVELOPES_SEEDED,
            entity_type="envelope",
            description=f"Seeding applied {len(applied)} envelopes, skipped {len(skipped)}",
            details={
                "applied": applied,
                "skipped": skipped,
            },
        )

    @staticmethod
    def transaction_recorded(
        transaction_id: int,
        envelope_id: int,
        kind: str,
        amount: Decimal,
        new_balance: Decimal,
        user_id: str,
        correlation_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Recorded {kind} of {amount} on envelope {envelope_id}",
            details={
                "envelope_id": envelope_id,
                "kind": kind,
                "amount": _money(amount),
                "new_balance": _money(new_balance),
            },
        )

    @staticmethod
    def overdraft(
        envelope_id: int,
        new_balance: Decimal,
        user_id: str,
        correlation_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OVERDRAFT,
            severity=AuditSeverity.WARNING,
            entity_type="envelope",
            entity_id=envelope_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Envelope {envelope_id} is overdrawn: {new_balance}",
            details={
                "new_balance": _money(new_balance),
            },
        )

    @staticmethod
    def product_changed(
        event_type: AuditEventType,
        product_id: int,
        name: str,
        price: Optional[Decimal] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        details: dict[str, Any] = {"name": name}
        if price is not None:
            details["price"] = _money(price)
        return AuditEvent(
            event_type=event_type,
            entity_type="product",
            entity_id=product_id,
            description=f"Product {verb}: {name}",
            details=details,
        )

    @staticmethod
    def product_consumed(
        product_id: int,
        name: str,
        quantity: int,
        total_cost: Decimal,
        envelope_id: int,
        user_id: str,
        correlation_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRODUCT_CONSUMED,
            entity_type="product",
            entity_id=product_id,
            correlation_id=correlation_id,
            user_id=user_id,
            description=f"Product consumed: {name} x{quantity}",
            details={
                "quantity": quantity,
                "total_cost": _money(total_cost),
                "envelope_id": envelope_id,
            },
        )

    @staticmethod
    def monthly_processed(
        month: str,
        rolled_over: int,
        reset: int,
        pruned: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_PROCESSED,
            entity_type="system_state",
            description=f"Monthly update for {month} committed",
            details={
                "month": month,
                "rolled_over": rolled_over,
                "reset": reset,
                "pruned": pruned,
            },
        )

    @staticmethod
    def monthly_already_processed(month: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_ALREADY_PROCESSED,
            entity_type="system_state",
            description=f"Monthly update for {month} already done",
            details={"month": month},
        )

    @staticmethod
    def monthly_failed(month: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTHLY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="system_state",
            description=f"Monthly update for {month} rolled back",
            error_message=error_message,
            details={"month": month},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
