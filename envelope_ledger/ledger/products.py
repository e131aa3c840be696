"""
Product Catalog

Named fixed-price items ("coffee", "bus ticket") that charge a known
envelope when used.

A product points at an envelope *type* by name. The stored envelope id
is only used to recover that name; at consume time the name is resolved
again for the consuming user, so an individual envelope type charges the
user's own instance.
"""

from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select

from envelope_ledger.audit import AuditLogger
from envelope_ledger.errors import (
    AlreadyExistsError,
    EnvelopeUnavailableError,
    InvalidAmountError,
    NotFoundError,
)
from envelope_ledger.ledger.amounts import (
    Amount,
    positive_amount,
    positive_quantity,
    quantize_cents,
    quantize_unit_price,
    to_decimal,
)
from envelope_ledger.ledger.envelopes import clean_name, find_active, find_deleted
from envelope_ledger.ledger.transactions import TransactionLedger
from envelope_ledger.models.audit import AuditEventBuilder, AuditEventType
from envelope_ledger.models.ledger import (
    Envelope,
    Product,
    ProductConsumeResult,
    TransactionKind,
)
from envelope_ledger.services.storage import Database, EnvelopeRow, ProductRow

logger = structlog.get_logger(__name__)


def unit_price(total_price: Amount, quantity: int) -> Decimal:
    """Price of one item when `quantity` items cost `total_price`."""
    total = positive_amount(total_price)
    quantity = positive_quantity(quantity)
    price = quantize_unit_price(total / Decimal(quantity))
    if price.is_zero():
        raise InvalidAmountError(total_price, f"Unit price rounds to zero: {total_price} / {quantity}")
    return price


class ProductCatalog:
    """Product CRUD plus consumption through the transaction ledger."""

    def __init__(
        self,
        database: Database,
        ledger: TransactionLedger,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._db = database
        self._ledger = ledger
        self._audit_logger = audit_logger

    def add(
        self,
        name: str,
        total_price: Amount,
        quantity: int = 1,
        *,
        envelope_name: str,
        description: Optional[str] = None,
    ) -> Product:
        """
        Add a product priced at total_price / quantity per unit.

        Raises:
            AlreadyExistsError: A product with this name exists
            NotFoundError: No active envelope named envelope_name
            InvalidAmountError / InvalidQuantityError: Bad price or quantity
        """
        name = clean_name(name, "Product")
        envelope_name = clean_name(envelope_name)
        price = unit_price(total_price, quantity)

        with self._db.unit_of_work() as session:
            if session.scalar(select(ProductRow.id).where(ProductRow.name == name)) is not None:
                raise AlreadyExistsError("product", name)
            target = session.scalar(
                select(EnvelopeRow)
                .where(EnvelopeRow.name == envelope_name, EnvelopeRow.is_deleted.is_(False))
                .order_by(EnvelopeRow.user_id.asc().nulls_first())
                .limit(1)
            )
            if target is None:
                raise NotFoundError("envelope", envelope_name)
            row = ProductRow(
                name=name,
                price=price,
                envelope_id=target.id,
                envelope=target,
                description=description,
            )
            session.add(row)
            session.flush()
            product = Product.model_validate(row)

        logger.info("product_added", name=name, price=str(price), envelope=envelope_name)
        self._log(AuditEventType.PRODUCT_ADDED, product)
        return product

    def update(self, name: str, total_price: Amount, quantity: Optional[int] = None) -> Product:
        """Re-price a product; quantity defaults to 1."""
        name = clean_name(name, "Product")
        price = unit_price(total_price, 1 if quantity is None else quantity)

        with self._db.unit_of_work() as session:
            row = session.scalar(select(ProductRow).where(ProductRow.name == name))
            if row is None:
                raise NotFoundError("product", name)
            row.price = price
            product = Product.model_validate(row)

        self._log(AuditEventType.PRODUCT_UPDATED, product)
        return product

    def delete(self, name: str) -> Product:
        """Remove a product. Transactions it produced are untouched."""
        name = clean_name(name, "Product")
        with self._db.unit_of_work() as session:
            row = session.scalar(select(ProductRow).where(ProductRow.name == name))
            if row is None:
                raise NotFoundError("product", name)
            product = Product.model_validate(row)
            session.delete(row)

        self._log(AuditEventType.PRODUCT_DELETED, product, with_price=False)
        return product

    def get(self, name: str) -> Product:
        name = clean_name(name, "Product")
        with self._db.read_session() as session:
            row = session.scalar(select(ProductRow).where(ProductRow.name == name))
            if row is None:
                raise NotFoundError("product", name)
            return Product.model_validate(row)

    def list_all(self) -> list[Product]:
        with self._db.read_session() as session:
            rows = session.scalars(select(ProductRow).order_by(ProductRow.name)).all()
            return [Product.model_validate(row) for row in rows]

    def list_names(self) -> list[str]:
        with self._db.read_session() as session:
            return list(session.scalars(select(ProductRow.name).order_by(ProductRow.name)).all())

    def consume(
        self,
        name: str,
        quantity: int,
        user_id: str,
        correlation_id: Optional[str] = None,
    ) -> ProductConsumeResult:
        """
        Charge `quantity` units of a product to its envelope.

        Raises:
            NotFoundError: Product, or its envelope for this user, not found
            EnvelopeUnavailableError: The target envelope is soft-deleted
            InvalidQuantityError: Quantity is not a positive integer
        """
        quantity = positive_quantity(quantity)
        product = self.get(name)

        with self._db.read_session() as session:
            target = find_active(session, product.envelope_name, user_id)
            if target is None:
                if find_deleted(session, product.envelope_name, user_id) is not None:
                    raise EnvelopeUnavailableError(product.envelope_name)
                raise NotFoundError("envelope", product.envelope_name)
            envelope = Envelope.model_validate(target)

        total_cost = quantize_cents(to_decimal(product.price) * quantity)
        result = self._ledger.record(
            envelope_id=envelope.id,
            amount=total_cost,
            kind=TransactionKind.SPEND,
            user_id=user_id,
            description=f"{product.name} x{quantity}",
            correlation_id=correlation_id,
        )

        if self._audit_logger:
            self._audit_logger.log(
                AuditEventBuilder.product_consumed(
                    product_id=product.id,
                    name=product.name,
                    quantity=quantity,
                    total_cost=total_cost,
                    envelope_id=envelope.id,
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            )

        return ProductConsumeResult(
            product=product,
            quantity=quantity,
            unit_price=product.price,
            total_cost=total_cost,
            envelope=envelope.model_copy(update={"balance": result.new_balance}),
            transaction=result.transaction,
            new_balance=result.new_balance,
            overdraft=result.overdraft,
        )

    def _log(self, event_type: AuditEventType, product: Product, with_price: bool = True) -> None:
        if self._audit_logger:
            self._audit_logger.log(
                AuditEventBuilder.product_changed(
                    event_type,
                    product.id,
                    product.name,
                    product.price if with_price else None,
                )
            )
