"""Tests for the transaction ledger, including concurrent spends."""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from envelope_ledger.config import DatabaseSettings
from envelope_ledger.errors import (
    EnvelopeUnavailableError,
    InvalidAmountError,
    NotFoundError,
    UnsupportedKindError,
)
from envelope_ledger.ledger import EnvelopeStore, TransactionLedger
from envelope_ledger.ledger.transactions import month_bounds, month_key
from envelope_ledger.models.audit import AuditEventType
from envelope_ledger.models.ledger import TransactionKind
from envelope_ledger.services.storage import Database, TransactionRow

from tests.conftest import USER_A, USER_B


def _count_transactions(database, envelope_id):
    with database.read_session() as session:
        return session.scalar(
            select(func.count()).select_from(TransactionRow).where(TransactionRow.envelope_id == envelope_id)
        )


@pytest.fixture
def groceries(store):
    return store.create_or_reenable("groceries", category="food", allocation=500)[0]


class TestRecord:
    """Tests for recording transactions."""

    def test_spend_reduces_balance(self, ledger, groceries):
        """A spend debits the envelope."""
        result = ledger.record(groceries, "12.50", TransactionKind.SPEND, USER_A, "milk")
        assert result.new_balance == Decimal("487.50")
        assert result.overdraft is False
        assert result.transaction.amount == Decimal("12.50")
        assert result.transaction.description == "milk"
        assert result.transaction.transaction_type == TransactionKind.SPEND

    def test_deposit_and_adjustment_credit(self, ledger, groceries):
        """Deposits and adjustments credit the envelope."""
        ledger.record(groceries, 20, TransactionKind.DEPOSIT, USER_A)
        result = ledger.record(groceries, 5, TransactionKind.ADJUSTMENT, USER_B)
        assert result.new_balance == Decimal("525.00")

    def test_overdraft_is_flagged_not_rejected(self, ledger, store, groceries, events):
        """Going negative succeeds and reports overdraft."""
        result = ledger.record(groceries, 600, TransactionKind.SPEND, USER_A)
        assert result.overdraft is True
        assert result.new_balance == Decimal("-100.00")
        assert store.get(groceries).balance == Decimal("-100.00")
        assert any(e.event_type == AuditEventType.OVERDRAFT for e in events)

    def test_timestamp_from_clock(self, ledger, clock, groceries):
        """Transactions are stamped by the injected clock."""
        result = ledger.record(groceries, 1, TransactionKind.SPEND, USER_A)
        assert result.transaction.timestamp == clock.now

    def test_correlation_id_stored(self, ledger, groceries):
        """The external id is kept on the row."""
        result = ledger.record(groceries, 1, TransactionKind.SPEND, USER_A, correlation_id="msg-42")
        assert ledger.get(result.transaction.id).message_id == "msg-42"

    @pytest.mark.parametrize("amount", [float("nan"), -5, 0, "0.001", "abc"])
    def test_invalid_amount_has_no_effect(self, ledger, store, database, groceries, amount):
        """Bad amounts are rejected and nothing is written."""
        with pytest.raises(InvalidAmountError):
            ledger.record(groceries, amount, TransactionKind.SPEND, USER_A)
        assert store.get(groceries).balance == Decimal("500.00")
        assert _count_transactions(database, groceries) == 0

    @pytest.mark.parametrize("kind", [TransactionKind.SPLIT, TransactionKind.RECURRING])
    def test_reserved_kinds_rejected(self, ledger, groceries, kind):
        """Reserved kinds cannot be recorded."""
        with pytest.raises(UnsupportedKindError):
            ledger.record(groceries, 1, kind, USER_A)

    def test_deleted_envelope_unavailable(self, ledger, store, database, groceries):
        """Soft-deleted envelopes refuse transactions."""
        store.soft_delete("groceries")
        with pytest.raises(EnvelopeUnavailableError):
            ledger.record(groceries, 1, TransactionKind.SPEND, USER_A)
        assert _count_transactions(database, groceries) == 0

    def test_missing_envelope(self, ledger):
        """Unknown envelope ids fail."""
        with pytest.raises(NotFoundError):
            ledger.record(9999, 1, TransactionKind.SPEND, USER_A)

    def test_float_money_does_not_drift(self, ledger, groceries):
        """A hundred 0.1 spends remove exactly 10.00."""
        for _ in range(100):
            result = ledger.record(groceries, 0.1, TransactionKind.SPEND, USER_A)
        assert result.new_balance == Decimal("490.00")


class TestConservation:
    """Balance always equals allocation plus signed transaction effects."""

    def test_balance_matches_transactions(self, ledger, store, groceries):
        """Balance is reproducible from the transaction log."""
        ledger.record(groceries, "10.10", TransactionKind.SPEND, USER_A)
        ledger.record(groceries, "3.33", TransactionKind.SPEND, USER_B)
        ledger.record(groceries, "7.00", TransactionKind.DEPOSIT, USER_A)
        ledger.record(groceries, "1.01", TransactionKind.ADJUSTMENT, USER_B)

        history = ledger.history(groceries, limit=100)
        effect = sum((t.signed_amount for t in history), Decimal("0"))
        assert store.get(groceries).balance == Decimal("500.00") + effect


class TestConcurrency:
    """Concurrent spends against one envelope."""

    def test_no_lost_updates(self, database, audit_logger, store, groceries):
        """N concurrent spends land as exactly N rows and N debits."""
        ledger = TransactionLedger(database, audit_logger=audit_logger)
        threads_count = 8
        spends_per_thread = 5
        errors = []
        barrier = threading.Barrier(threads_count)

        def worker(user_id):
            barrier.wait()
            for _ in range(spends_per_thread):
                try:
                    ledger.record(groceries, "1.00", TransactionKind.SPEND, user_id)
                except Exception as e:
                    errors.append(e)

        threads = [
            threading.Thread(target=worker, args=(USER_A if i % 2 else USER_B,))
            for i in range(threads_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        total = threads_count * spends_per_thread
        assert errors == []
        assert _count_transactions(database, groceries) == total
        assert store.get(groceries).balance == Decimal("500.00") - Decimal(total)

    def test_no_lost_updates_in_memory(self, audit_logger):
        """An in-memory database serializes concurrent spends and reads too."""
        database = Database(DatabaseSettings(url="sqlite://"))
        database.create_schema()
        try:
            store = EnvelopeStore(database, (USER_A, USER_B), audit_logger=audit_logger)
            envelope_id = store.create_or_reenable("groceries", category="food", allocation=500)[0]
            ledger = TransactionLedger(database, audit_logger=audit_logger)
            threads_count = 8
            spends_per_thread = 5
            errors = []
            barrier = threading.Barrier(threads_count)

            def worker(user_id):
                barrier.wait()
                for _ in range(spends_per_thread):
                    try:
                        ledger.record(envelope_id, "1.00", TransactionKind.SPEND, user_id)
                        store.list_active()
                    except Exception as e:
                        errors.append(e)

            threads = [
                threading.Thread(target=worker, args=(USER_A if i % 2 else USER_B,))
                for i in range(threads_count)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            total = threads_count * spends_per_thread
            assert errors == []
            assert _count_transactions(database, envelope_id) == total
            assert store.get(envelope_id).balance == Decimal("460.00")
        finally:
            database.dispose()


class TestQueries:
    """Tests for history and monthly sums."""

    def test_history_newest_first_with_limit(self, ledger, clock, groceries):
        """History is newest first and limited."""
        for day in range(1, 6):
            clock.now = datetime(2024, 4, day, 9, 0, tzinfo=timezone.utc)
            ledger.record(groceries, day, TransactionKind.SPEND, USER_A)
        history = ledger.history(groceries, limit=3)
        assert [t.amount for t in history] == [Decimal("5.00"), Decimal("4.00"), Decimal("3.00")]

    def test_spent_this_month_counts_spends_in_month(self, ledger, clock, groceries):
        """Only spends inside the calendar month are summed."""
        clock.now = datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc)
        ledger.record(groceries, 50, TransactionKind.SPEND, USER_A)
        clock.now = datetime(2024, 4, 1, 0, 0, tzinfo=timezone.utc)
        ledger.record(groceries, 20, TransactionKind.SPEND, USER_A)
        ledger.record(groceries, 99, TransactionKind.DEPOSIT, USER_A)
        clock.now = datetime(2024, 4, 30, 23, 59, tzinfo=timezone.utc)
        ledger.record(groceries, "0.50", TransactionKind.SPEND, USER_B)

        assert ledger.spent_this_month(groceries, 2024, 4) == Decimal("20.50")
        assert ledger.spent_this_month(groceries, 2024, 3) == Decimal("50.00")
        assert ledger.spent_this_month(groceries, 2024, 5) == Decimal("0.00")

    def test_get_missing_transaction(self, ledger):
        """Unknown transaction ids fail."""
        with pytest.raises(NotFoundError):
            ledger.get(12345)


class TestMonthHelpers:
    """Tests for month arithmetic."""

    def test_month_bounds_december(self):
        """December ends at the next year's January."""
        start, end = month_bounds(2023, 12)
        assert start == datetime(2023, 12, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_month_key_uses_utc(self):
        """The month is taken in UTC."""
        local = datetime(2024, 4, 1, 1, 0, tzinfo=timezone(timedelta(hours=2)))
        assert month_key(local) == "2024-03"
