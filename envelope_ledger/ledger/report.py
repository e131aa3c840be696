"""
Report Engine

Read-only spend pace figures. Spending is compared against a straight
line from zero on the 1st to the full allocation on the last day.

Thresholds are compared by cross-multiplication
(spent <= ratio * expected) so boundary values land in the lower
bucket exactly, without dividing Decimals.
"""

import calendar
from datetime import datetime
from decimal import Decimal
from typing import Union

from envelope_ledger.ledger.amounts import ZERO, quantize_cents
from envelope_ledger.ledger.envelopes import EnvelopeStore
from envelope_ledger.ledger.transactions import TransactionLedger, to_utc
from envelope_ledger.models.ledger import Envelope
from envelope_ledger.models.report import EnvelopeDetail, EnvelopeStat, PaceStatus

HUNDRED = Decimal(100)


def classify(
    allocation: Decimal,
    spent_from_allocation: Decimal,
    expected_pace: Decimal,
    caution_ratio: Union[Decimal, float] = Decimal("1.0"),
    over_pace_ratio: Union[Decimal, float] = Decimal("1.25"),
) -> PaceStatus:
    """Bucket an envelope by spent_from_allocation / expected_pace."""
    if allocation == ZERO:
        return PaceStatus.NEUTRAL

    if expected_pace <= ZERO:
        # Ratio is 0 with nothing spent, unbounded otherwise
        return PaceStatus.ON_TRACK if spent_from_allocation <= ZERO else PaceStatus.OVER_PACE

    caution = Decimal(str(caution_ratio))
    over_pace = Decimal(str(over_pace_ratio))
    if spent_from_allocation <= caution * expected_pace:
        return PaceStatus.ON_TRACK
    if spent_from_allocation <= over_pace * expected_pace:
        return PaceStatus.CAUTION
    return PaceStatus.OVER_PACE


class ReportEngine:
    """Builds EnvelopeStat rows from the store and the ledger."""

    def __init__(
        self,
        store: EnvelopeStore,
        ledger: TransactionLedger,
        caution_ratio: float = 1.0,
        over_pace_ratio: float = 1.25,
    ):
        self._store = store
        self._ledger = ledger
        self._caution_ratio = caution_ratio
        self._over_pace_ratio = over_pace_ratio

    def generate(self, now: datetime) -> list[EnvelopeStat]:
        """One stat per active envelope, in list_active order."""
        now = to_utc(now)
        return [self._stat(envelope, now) for envelope in self._store.list_active()]

    def envelope_report(
        self,
        envelope_id: int,
        now: datetime,
        transaction_limit: int = 10,
    ) -> EnvelopeDetail:
        now = to_utc(now)
        envelope = self._store.get(envelope_id)
        return EnvelopeDetail(
            stat=self._stat(envelope, now),
            recent_transactions=self._ledger.history(envelope_id, limit=transaction_limit),
            day_of_month=now.day,
            days_in_month=calendar.monthrange(now.year, now.month)[1],
        )

    def _stat(self, envelope: Envelope, now: datetime) -> EnvelopeStat:
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        allocation = envelope.allocation
        balance = envelope.balance

        expected_pace = allocation * Decimal(now.day) / Decimal(days_in_month)
        spent_from_allocation = allocation - balance
        if allocation == ZERO:
            remaining_percent = ZERO
        else:
            remaining_percent = balance / allocation * HUNDRED

        status = classify(
            allocation,
            spent_from_allocation,
            expected_pace,
            self._caution_ratio,
            self._over_pace_ratio,
        )

        return EnvelopeStat(
            envelope_id=envelope.id,
            name=envelope.name,
            user_id=envelope.user_id,
            category=envelope.category,
            allocation=allocation,
            balance=balance,
            actual_spent_this_month=self._ledger.spent_this_month(envelope.id, now.year, now.month),
            expected_pace=quantize_cents(expected_pace),
            spent_from_allocation=spent_from_allocation,
            remaining_percent=quantize_cents(remaining_percent),
            status=status,
        )
