"""Tests for the audit logger."""

from decimal import Decimal

import pytest

from envelope_ledger.audit import AuditLogger, create_correlation_id
from envelope_ledger.errors import AlreadyExistsError
from envelope_ledger.models.audit import AuditEventBuilder, AuditEventType


class TestAuditLogger:
    """Tests for event delivery."""

    def test_listeners_receive_events(self):
        """Every subscriber sees every event."""
        received = []
        logger = AuditLogger()
        logger.subscribe(received.append)
        event = AuditEventBuilder.envelope_created(1, "groceries", None, Decimal("500.00"))
        assert logger.log(event) is True
        assert received == [event]

    def test_failing_listener_does_not_raise(self):
        """A broken subscriber is logged and skipped."""
        received = []

        def broken(event):
            raise RuntimeError("cache offline")

        logger = AuditLogger(listeners=[broken, received.append])
        delivered = logger.log(AuditEventBuilder.monthly_already_processed("2024-05"))
        assert delivered is False
        assert len(received) == 1

    def test_unsubscribe(self):
        """Unsubscribed listeners stop receiving events."""
        received = []
        logger = AuditLogger(listeners=[received.append])
        logger.unsubscribe(received.append)
        logger.log(AuditEventBuilder.monthly_already_processed("2024-05"))
        assert received == []

    def test_log_error_builds_system_error(self):
        """log_error emits a system_error event."""
        received = []
        logger = AuditLogger(listeners=[received.append])
        logger.log_error("storage_failure", "locked", details={"operation": "spend"}, correlation_id="c1")
        assert received[0].event_type == AuditEventType.SYSTEM_ERROR
        assert received[0].correlation_id == "c1"

    def test_correlation_ids_unique(self):
        """Correlation ids are fresh strings."""
        first, second = create_correlation_id(), create_correlation_id()
        assert isinstance(first, str)
        assert first != second


class TestMutationEvents:
    """Mutations emit audit events after they commit."""

    def test_spend_emits_transaction_event(self, store, ledger, events):
        """Recording a transaction is audited with its correlation id."""
        envelope_id = store.create_or_reenable("groceries", allocation=500)[0]
        ledger.record(envelope_id, 5, "spend", "u1", correlation_id="msg-9")
        recorded = [e for e in events if e.event_type == AuditEventType.TRANSACTION_RECORDED]
        assert len(recorded) == 1
        assert recorded[0].correlation_id == "msg-9"
        assert recorded[0].details["new_balance"] == "495.00"

    def test_failed_mutation_emits_nothing(self, store, events):
        """Rejected operations leave the audit stream alone."""
        store.create_or_reenable("groceries", allocation=500)
        before = len(events)
        with pytest.raises(AlreadyExistsError):
            store.create_or_reenable("groceries", allocation=1)
        assert len(events) == before
