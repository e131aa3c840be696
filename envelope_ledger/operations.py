"""
Operation Table

DESIGN DECISION: Dispatch is an explicit name -> function mapping.
A command front end parses user text into an operation name plus
keyword arguments; this module maps that onto the engine API and
returns the structured result. No text is produced here.

Unknown names fail loudly with UnknownOperationError instead of
falling back to some default operation.
"""

from datetime import datetime
from typing import Any, Callable, Optional, Union

import structlog

from envelope_ledger.errors import StorageFailure, UnknownOperationError
from envelope_ledger.ledger.amounts import Amount
from envelope_ledger.models.ledger import (
    Envelope,
    Product,
    ProductConsumeResult,
    RecordResult,
    Transaction,
    TransactionKind,
)
from envelope_ledger.models.report import (
    AlreadyProcessed,
    EnvelopeDetail,
    EnvelopeStat,
    MonthlySummary,
)
from envelope_ledger.orchestrator import LedgerEngine

logger = structlog.get_logger(__name__)

Operation = Callable[..., Any]


# =============================================================================
# BALANCE OPERATIONS
# =============================================================================

def spend(
    engine: LedgerEngine,
    envelope: str,
    amount: Amount,
    user_id: str,
    description: str = "",
    correlation_id: Optional[str] = None,
) -> RecordResult:
    return engine.record(envelope, amount, TransactionKind.SPEND, user_id, description, correlation_id)


def deposit(
    engine: LedgerEngine,
    envelope: str,
    amount: Amount,
    user_id: str,
    description: str = "",
    correlation_id: Optional[str] = None,
) -> RecordResult:
    return engine.record(envelope, amount, TransactionKind.DEPOSIT, user_id, description, correlation_id)


def adjust(
    engine: LedgerEngine,
    envelope: str,
    amount: Amount,
    user_id: str,
    description: str = "",
    correlation_id: Optional[str] = None,
) -> RecordResult:
    """Credit adjustment, e.g. a refund or a correction."""
    return engine.record(envelope, amount, TransactionKind.ADJUSTMENT, user_id, description, correlation_id)


def use_product(
    engine: LedgerEngine,
    product: str,
    user_id: str,
    quantity: int = 1,
    correlation_id: Optional[str] = None,
) -> ProductConsumeResult:
    return engine.use_product(product, quantity, user_id, correlation_id)


# =============================================================================
# ENVELOPE OPERATIONS
# =============================================================================

def create_envelope(
    engine: LedgerEngine,
    name: str,
    category: Optional[str] = None,
    allocation: Optional[Amount] = None,
    is_individual: Optional[bool] = None,
    rollover: Optional[bool] = None,
) -> list[Envelope]:
    """Create or re-enable; returns every row touched."""
    ids = engine.store.create_or_reenable(
        name,
        category=category,
        allocation=allocation,
        is_individual=is_individual,
        rollover=rollover,
    )
    return [engine.store.get(envelope_id) for envelope_id in ids]


def delete_envelope(engine: LedgerEngine, name: str, owner: Optional[str] = None) -> Envelope:
    return engine.store.soft_delete(name, owner)


def edit_envelope(
    engine: LedgerEngine,
    name: str,
    category: Optional[str] = None,
    allocation: Optional[Amount] = None,
    rollover: Optional[bool] = None,
) -> list[Envelope]:
    return engine.store.update(name, category=category, allocation=allocation, rollover=rollover)


def list_envelopes(engine: LedgerEngine) -> list[Envelope]:
    return engine.store.list_active()


def history(
    engine: LedgerEngine,
    envelope: str,
    user_id: Optional[str] = None,
    limit: int = 10,
) -> list[Transaction]:
    target = engine.store.resolve(envelope, user_id)
    return engine.ledger.history(target.id, limit=limit)


# =============================================================================
# PRODUCT OPERATIONS
# =============================================================================

def add_product(
    engine: LedgerEngine,
    name: str,
    total_price: Amount,
    envelope: str,
    quantity: int = 1,
    description: Optional[str] = None,
) -> Product:
    return engine.catalog.add(
        name,
        total_price,
        quantity=quantity,
        envelope_name=envelope,
        description=description,
    )


def update_product(
    engine: LedgerEngine,
    name: str,
    total_price: Amount,
    quantity: Optional[int] = None,
) -> Product:
    return engine.catalog.update(name, total_price, quantity)


def delete_product(engine: LedgerEngine, name: str) -> Product:
    return engine.catalog.delete(name)


def list_products(engine: LedgerEngine) -> list[Product]:
    return engine.catalog.list_all()


# =============================================================================
# MONTHLY AND REPORTS
# =============================================================================

def monthly_update(
    engine: LedgerEngine,
    now: Optional[datetime] = None,
) -> Union[MonthlySummary, AlreadyProcessed]:
    return engine.processor.process(now or engine.now())


def report(
    engine: LedgerEngine,
    now: Optional[datetime] = None,
    envelope: Optional[str] = None,
    user_id: Optional[str] = None,
    transaction_limit: int = 10,
) -> Union[list[EnvelopeStat], EnvelopeDetail]:
    """All envelopes, or one envelope with its recent history."""
    now = now or engine.now()
    if envelope is None:
        return engine.reports.generate(now)
    target = engine.store.resolve(envelope, user_id)
    return engine.reports.envelope_report(target.id, now, transaction_limit=transaction_limit)


OPERATIONS: dict[str, Operation] = {
    "spend": spend,
    "deposit": deposit,
    "adjust": adjust,
    "use_product": use_product,
    "create_envelope": create_envelope,
    "delete_envelope": delete_envelope,
    "edit_envelope": edit_envelope,
    "list_envelopes": list_envelopes,
    "add_product": add_product,
    "update_product": update_product,
    "delete_product": delete_product,
    "list_products": list_products,
    "history": history,
    "monthly_update": monthly_update,
    "report": report,
}


def execute(engine: LedgerEngine, name: str, **kwargs: Any) -> Any:
    """
    Run the operation registered under `name`.

    Ledger errors propagate unchanged. Storage failures are also
    reported to the audit log before they propagate.

    Raises:
        UnknownOperationError: `name` is not in OPERATIONS
    """
    operation = OPERATIONS.get(name)
    if operation is None:
        logger.warning("unknown_operation", operation=name)
        raise UnknownOperationError(name)

    logger.debug("operation_started", operation=name)
    try:
        return operation(engine, **kwargs)
    except StorageFailure as e:
        engine.audit_logger.log_error(
            error_type="storage_failure",
            error_message=str(e),
            details={"operation": name},
            correlation_id=kwargs.get("correlation_id"),
        )
        raise
