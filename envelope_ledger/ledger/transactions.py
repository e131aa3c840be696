"""
Transaction Ledger

The ONLY path that changes an envelope's balance after creation.

CRITICAL: The balance change is a single conditional UPDATE relative to the
envelope's id (balance = balance + delta), issued in the same unit of work
as the transaction insert. There is no read-value-then-write-value round
trip, so two concurrent spends against one envelope both land in full.

Overdraft is allowed. A negative result is reported as a flag.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

import structlog
from sqlalchemy import func, select, type_coerce, update

from envelope_ledger.audit import AuditLogger
from envelope_ledger.errors import (
    EnvelopeUnavailableError,
    NotFoundError,
    UnsupportedKindError,
)
from envelope_ledger.ledger.amounts import Amount, positive_amount
from envelope_ledger.models.audit import AuditEventBuilder
from envelope_ledger.models.ledger import RecordResult, Transaction, TransactionKind
from envelope_ledger.services.storage import Database, EnvelopeRow, Money, TransactionRow

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def month_key(moment: datetime) -> str:
    """YYYY-MM of `moment` in UTC."""
    moment = to_utc(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """[start_of_month, start_of_next_month) in UTC."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


class TransactionLedger:
    """Appends transactions and moves balances, atomically."""

    def __init__(
        self,
        database: Database,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utcnow,
    ):
        self._db = database
        self._audit_logger = audit_logger
        self._clock = clock

    def record(
        self,
        envelope_id: int,
        amount: Amount,
        kind: TransactionKind,
        user_id: str,
        description: str = "",
        correlation_id: Optional[str] = None,
    ) -> RecordResult:
        """
        Record one transaction and apply it to the envelope balance.

        Args:
            envelope_id: Target envelope (must be active)
            amount: Positive magnitude; the kind decides debit or credit
            kind: spend, deposit or adjustment
            user_id: Who initiated it
            description: Free text
            correlation_id: External id, e.g. the command message id

        Raises:
            InvalidAmountError: Amount is NaN, infinite, negative or zero
            UnsupportedKindError: Kind is reserved (split, recurring)
            EnvelopeUnavailableError: Envelope is soft-deleted
            NotFoundError: Envelope does not exist
            StorageFailure: The unit could not commit; nothing was applied
        """
        amount = positive_amount(amount)
        kind = TransactionKind(kind)
        if kind.is_reserved:
            raise UnsupportedKindError(f"Transaction kind '{kind.value}' is not supported yet")
        delta = kind.signed(amount)

        with self._db.unit_of_work() as session:
            updated = session.execute(
                update(EnvelopeRow)
                .where(EnvelopeRow.id == envelope_id, EnvelopeRow.is_deleted.is_(False))
                .values(balance=EnvelopeRow.balance + delta)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                envelope = session.get(EnvelopeRow, envelope_id)
                if envelope is None:
                    raise NotFoundError("envelope", envelope_id)
                raise EnvelopeUnavailableError(envelope.name)

            row = TransactionRow(
                envelope_id=envelope_id,
                amount=amount,
                description=description or "",
                timestamp=to_utc(self._clock()),
                user_id=user_id,
                message_id=correlation_id,
                transaction_type=kind.value,
            )
            session.add(row)
            session.flush()

            new_balance = session.scalar(
                select(EnvelopeRow.balance).where(EnvelopeRow.id == envelope_id)
            )
            transaction = Transaction.model_validate(row)

        overdraft = new_balance < 0
        logger.debug(
            "transaction_recorded",
            envelope_id=envelope_id,
            kind=kind.value,
            amount=str(amount),
            new_balance=str(new_balance),
        )

        if self._audit_logger:
            self._audit_logger.log(
                AuditEventBuilder.transaction_recorded(
                    transaction_id=transaction.id,
                    envelope_id=envelope_id,
                    kind=kind.value,
                    amount=amount,
                    new_balance=new_balance,
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            )
            if overdraft:
                self._audit_logger.log(
                    AuditEventBuilder.overdraft(envelope_id, new_balance, user_id, correlation_id)
                )

        return RecordResult(transaction=transaction, new_balance=new_balance, overdraft=overdraft)

    def spent_this_month(self, envelope_id: int, year: int, month: int) -> Decimal:
        """Sum of spend amounts with timestamps inside the calendar month (UTC)."""
        start, end = month_bounds(year, month)
        with self._db.read_session() as session:
            total = session.scalar(
                select(
                    type_coerce(func.coalesce(func.sum(TransactionRow.amount), 0), Money())
                ).where(
                    TransactionRow.envelope_id == envelope_id,
                    TransactionRow.transaction_type == TransactionKind.SPEND.value,
                    TransactionRow.timestamp >= start,
                    TransactionRow.timestamp < end,
                )
            )
        return total if total is not None else Decimal("0.00")

    def history(self, envelope_id: int, limit: int = 10) -> list[Transaction]:
        """Most recent transactions for an envelope, newest first."""
        with self._db.read_session() as session:
            rows = session.scalars(
                select(TransactionRow)
                .where(TransactionRow.envelope_id == envelope_id)
                .order_by(TransactionRow.timestamp.desc(), TransactionRow.id.desc())
                .limit(limit)
            ).all()
            return [Transaction.model_validate(row) for row in rows]

    def get(self, transaction_id: int) -> Transaction:
        with self._db.read_session() as session:
            row = session.get(TransactionRow, transaction_id)
            if row is None:
                raise NotFoundError("transaction", transaction_id)
            return Transaction.model_validate(row)
