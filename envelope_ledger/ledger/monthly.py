"""
Monthly Processor

Once per calendar month: refill every active envelope, prune old
transactions and remember which month was done.

CRITICAL: The whole run is ONE unit of work, including the check of
`last_processed_month`. Two overlapping runs (scheduler and a manual
command) therefore serialize: the second one sees the first one's
marker and returns AlreadyProcessed instead of refilling twice.
"""

import threading
from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from envelope_ledger.audit import AuditLogger
from envelope_ledger.errors import StorageFailure
from envelope_ledger.ledger.transactions import month_key, to_utc
from envelope_ledger.models.audit import AuditEventBuilder
from envelope_ledger.models.report import (
    AlreadyProcessed,
    EnvelopeRollover,
    MonthlySummary,
    ProcessorState,
)
from envelope_ledger.services.storage import (
    Database,
    EnvelopeRow,
    SystemStateRow,
    TransactionRow,
)

logger = structlog.get_logger(__name__)

LAST_PROCESSED_KEY = "last_processed_month"


def retention_cutoff(now: datetime, retention_months: int) -> datetime:
    """
    First instant kept by retention.

    With 13 months and now in 2024-03, the cutoff is 2023-03-01T00:00Z.
    """
    if retention_months < 1:
        raise ValueError(f"retention_months must be at least 1, got {retention_months}")
    now = to_utc(now)
    index = now.year * 12 + (now.month - 1) - (retention_months - 1)
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


class MonthlyProcessor:
    """Runs the monthly refill exactly once per month."""

    def __init__(
        self,
        database: Database,
        audit_logger: Optional[AuditLogger] = None,
        retention_months: int = 13,
    ):
        self._db = database
        self._audit_logger = audit_logger
        self._retention_months = retention_months
        self._lock = threading.Lock()
        self.state = ProcessorState.IDLE

    def last_processed_month(self) -> Optional[str]:
        with self._db.read_session() as session:
            row = session.get(SystemStateRow, LAST_PROCESSED_KEY)
            return row.value if row is not None else None

    def is_due(self, now: datetime) -> bool:
        """True if `now`'s month has not been processed yet."""
        return self.last_processed_month() != month_key(now)

    def process(self, now: datetime) -> Union[MonthlySummary, AlreadyProcessed]:
        """
        Refill envelopes for the month containing `now`.

        Rollover envelopes get their allocation added to the balance,
        the rest are reset to it.

        Returns:
            MonthlySummary when the run committed, AlreadyProcessed when
            this month was already done (nothing changed)

        Raises:
            StorageFailure: The run rolled back; prior state is intact
        """
        now = to_utc(now)
        month = month_key(now)
        cutoff = retention_cutoff(now, self._retention_months)

        with self._lock:
            self.state = ProcessorState.RUNNING
            try:
                outcome = self._run(month, now, cutoff)
            except StorageFailure as e:
                self._fail(month, e)
                raise
            except SQLAlchemyError as e:
                self._fail(month, e)
                raise StorageFailure(f"Monthly update for {month} failed: {e}") from e
            except Exception as e:
                self._fail(month, e)
                raise

            if isinstance(outcome, AlreadyProcessed):
                self.state = ProcessorState.IDLE
                logger.info("monthly_update_skipped", month=month)
                if self._audit_logger:
                    self._audit_logger.log(AuditEventBuilder.monthly_already_processed(month))
                return outcome

            self.state = ProcessorState.COMMITTED

        logger.info(
            "monthly_update_committed",
            month=month,
            rolled_over=outcome.rolled_over,
            reset=outcome.reset,
            pruned=outcome.pruned,
        )
        if self._audit_logger:
            self._audit_logger.log(
                AuditEventBuilder.monthly_processed(
                    month, outcome.rolled_over, outcome.reset, outcome.pruned
                )
            )
        return outcome

    def _fail(self, month: str, error: Exception) -> None:
        self.state = ProcessorState.FAILED
        logger.error("monthly_update_failed", month=month, error=str(error))
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.monthly_failed(month, str(error)))

    def _run(
        self,
        month: str,
        now: datetime,
        cutoff: datetime,
    ) -> Union[MonthlySummary, AlreadyProcessed]:
        with self._db.unit_of_work() as session:
            marker = session.scalar(
                select(SystemStateRow)
                .where(SystemStateRow.key == LAST_PROCESSED_KEY)
                .with_for_update()
            )
            if marker is not None and marker.value == month:
                return AlreadyProcessed(month=month)

            rows = session.scalars(
                select(EnvelopeRow)
                .where(EnvelopeRow.is_deleted.is_(False))
                .order_by(EnvelopeRow.name, EnvelopeRow.user_id.asc().nulls_first())
                .with_for_update()
            ).all()

            changes: list[EnvelopeRollover] = []
            for row in rows:
                old_balance = row.balance
                if row.rollover:
                    row.balance = old_balance + row.allocation
                else:
                    row.balance = row.allocation
                changes.append(
                    EnvelopeRollover(
                        envelope_id=row.id,
                        name=row.name,
                        user_id=row.user_id,
                        old_balance=old_balance,
                        new_balance=row.balance,
                        allocation=row.allocation,
                        rollover=row.rollover,
                    )
                )

            pruned = session.execute(
                delete(TransactionRow)
                .where(TransactionRow.timestamp < cutoff)
                .execution_options(synchronize_session=False)
            ).rowcount

            if marker is None:
                session.add(SystemStateRow(key=LAST_PROCESSED_KEY, value=month))
            else:
                marker.value = month

        rolled_over = sum(1 for change in changes if change.rollover)
        return MonthlySummary(
            month=month,
            processed_at=now,
            rolled_over=rolled_over,
            reset=len(changes) - rolled_over,
            pruned=pruned or 0,
            prune_cutoff=cutoff,
            envelopes=changes,
        )
