"""Tests for the product catalog."""

import pytest
from decimal import Decimal

from envelope_ledger.errors import (
    AlreadyExistsError,
    EnvelopeUnavailableError,
    InvalidAmountError,
    InvalidQuantityError,
    NotFoundError,
)
from envelope_ledger.models.audit import AuditEventType
from envelope_ledger.models.ledger import TransactionKind

from tests.conftest import USER_A, USER_B


@pytest.fixture
def coffee_envelope(store):
    return store.create_or_reenable("coffee", category="food", allocation=100)[0]


class TestProductCrud:
    """Tests for adding, updating and deleting products."""

    def test_add_computes_unit_price(self, catalog, coffee_envelope):
        """Unit price is total / quantity at four decimal places."""
        product = catalog.add("beans", "10.00", quantity=3, envelope_name="coffee")
        assert product.price == Decimal("3.3333")
        assert product.envelope_id == coffee_envelope
        assert product.envelope_name == "coffee"

    def test_add_default_quantity(self, catalog, coffee_envelope):
        """Quantity defaults to one."""
        product = catalog.add("latte", "4.50", envelope_name="coffee", description="large")
        assert product.price == Decimal("4.5000")
        assert catalog.get("latte").description == "large"

    def test_add_duplicate_name(self, catalog, coffee_envelope):
        """Product names are unique."""
        catalog.add("latte", 4, envelope_name="coffee")
        with pytest.raises(AlreadyExistsError):
            catalog.add("latte", 5, envelope_name="coffee")

    def test_add_unknown_envelope(self, catalog):
        """The target envelope must exist and be active."""
        with pytest.raises(NotFoundError):
            catalog.add("latte", 4, envelope_name="nowhere")

    def test_add_requires_envelope(self, catalog, coffee_envelope):
        """The target envelope has no default and cannot be passed by position."""
        with pytest.raises(TypeError):
            catalog.add("latte", 4)
        with pytest.raises(TypeError):
            catalog.add("latte", 4, 1, "coffee")
        assert catalog.list_all() == []

    def test_add_deleted_envelope(self, catalog, store, coffee_envelope):
        """A soft-deleted envelope is not a valid target."""
        store.soft_delete("coffee")
        with pytest.raises(NotFoundError):
            catalog.add("latte", 4, envelope_name="coffee")

    @pytest.mark.parametrize("price", [0, -1, "nan"])
    def test_add_bad_price(self, catalog, coffee_envelope, price):
        """Prices must be positive."""
        with pytest.raises(InvalidAmountError):
            catalog.add("latte", price, envelope_name="coffee")
        assert catalog.list_all() == []

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_add_bad_quantity(self, catalog, coffee_envelope, quantity):
        """Quantities must be positive integers."""
        with pytest.raises(InvalidQuantityError):
            catalog.add("latte", 4, quantity=quantity, envelope_name="coffee")

    def test_update_price(self, catalog, coffee_envelope, events):
        """Updating re-prices the product."""
        catalog.add("beans", 10, quantity=2, envelope_name="coffee")
        product = catalog.update("beans", 12, quantity=4)
        assert product.price == Decimal("3.0000")
        assert any(e.event_type == AuditEventType.PRODUCT_UPDATED for e in events)

    def test_update_unknown(self, catalog):
        """Updating a missing product fails."""
        with pytest.raises(NotFoundError):
            catalog.update("ghost", 1)

    def test_delete_keeps_transactions(self, catalog, ledger, coffee_envelope):
        """Deleting a product leaves its transactions alone."""
        catalog.add("latte", 4, envelope_name="coffee")
        catalog.consume("latte", 1, USER_A)
        deleted = catalog.delete("latte")
        assert deleted.name == "latte"
        assert catalog.list_all() == []
        assert len(ledger.history(coffee_envelope)) == 1

    def test_delete_unknown(self, catalog):
        """Deleting a missing product fails."""
        with pytest.raises(NotFoundError):
            catalog.delete("ghost")

    def test_list_all_sorted(self, catalog, coffee_envelope):
        """Products are listed by name."""
        catalog.add("muffin", 3, envelope_name="coffee")
        catalog.add("latte", 4, envelope_name="coffee")
        assert [p.name for p in catalog.list_all()] == ["latte", "muffin"]


class TestConsume:
    """Tests for consuming products."""

    def test_consume_charges_envelope(self, catalog, store, coffee_envelope, events):
        """Consuming records a spend of price x quantity."""
        catalog.add("latte", "4.50", envelope_name="coffee")
        result = catalog.consume("latte", 2, USER_A, correlation_id="msg-1")

        assert result.total_cost == Decimal("9.00")
        assert result.unit_price == Decimal("4.5000")
        assert result.new_balance == Decimal("91.00")
        assert result.envelope.id == coffee_envelope
        assert result.envelope.balance == Decimal("91.00")
        assert result.transaction.description == "latte x2"
        assert result.transaction.transaction_type == TransactionKind.SPEND
        assert result.transaction.message_id == "msg-1"
        assert store.get(coffee_envelope).balance == Decimal("91.00")
        assert any(e.event_type == AuditEventType.PRODUCT_CONSUMED for e in events)

    def test_consume_total_rounded_to_cents(self, catalog, coffee_envelope):
        """3 x 3.3333 is charged as 10.00."""
        catalog.add("beans", 10, quantity=3, envelope_name="coffee")
        result = catalog.consume("beans", 3, USER_A)
        assert result.total_cost == Decimal("10.00")

    def test_consume_individual_charges_own_instance(self, catalog, store):
        """Each user is charged on their own individual envelope."""
        store.create_or_reenable("snacks", allocation=30, is_individual=True)
        catalog.add("chips", 2, envelope_name="snacks")

        result_b = catalog.consume("chips", 1, USER_B)
        assert result_b.envelope.user_id == USER_B
        assert store.resolve("snacks", USER_B).balance == Decimal("28.00")
        assert store.resolve("snacks", USER_A).balance == Decimal("30.00")

    def test_consume_overdraft(self, catalog, coffee_envelope):
        """Consuming past zero is allowed and flagged."""
        catalog.add("espresso machine", 150, envelope_name="coffee")
        result = catalog.consume("espresso machine", 1, USER_A)
        assert result.overdraft is True
        assert result.new_balance == Decimal("-50.00")

    def test_consume_unknown_product(self, catalog):
        """Consuming a missing product fails."""
        with pytest.raises(NotFoundError):
            catalog.consume("ghost", 1, USER_A)

    def test_consume_bad_quantity(self, catalog, coffee_envelope):
        """Quantity must be positive."""
        catalog.add("latte", 4, envelope_name="coffee")
        with pytest.raises(InvalidQuantityError):
            catalog.consume("latte", 0, USER_A)

    def test_consume_deleted_envelope(self, catalog, store, ledger, coffee_envelope):
        """A soft-deleted target envelope is unavailable."""
        catalog.add("latte", 4, envelope_name="coffee")
        store.soft_delete("coffee")
        with pytest.raises(EnvelopeUnavailableError):
            catalog.consume("latte", 1, USER_A)
        assert ledger.history(coffee_envelope) == []

    def test_consume_after_own_instance_deleted(self, catalog, store):
        """Deleting one twin only blocks that user."""
        store.create_or_reenable("snacks", allocation=30, is_individual=True)
        catalog.add("chips", 2, envelope_name="snacks")
        store.soft_delete("snacks", owner=USER_A)

        with pytest.raises(EnvelopeUnavailableError):
            catalog.consume("chips", 1, USER_A)
        assert catalog.consume("chips", 1, USER_B).new_balance == Decimal("28.00")
