"""
Database Schema

DESIGN DECISION: Money is stored as an integer count of minor units.
SQLite has no exact decimal type, and a REAL column would let rounding
drift accumulate over thousands of `balance = balance + x` updates.
The Money column type converts at the boundary so the rest of the code
only ever sees Decimal.

Uniqueness of envelopes is enforced by two partial indexes that cover
soft-deleted rows too, so a deleted envelope keeps its slot reserved.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class Money(TypeDecorator):
    """Decimal in Python, integer minor units in the database."""

    impl = Integer
    cache_ok = True

    def __init__(self, scale: int = 2):
        super().__init__()
        self.scale = scale
        self._factor = Decimal(10) ** scale
        self._step = Decimal(1).scaleb(-scale)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return int((value * self._factor).to_integral_value(rounding=ROUND_HALF_UP))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(int(value)) / self._factor).quantize(self._step)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC in Python, naive UTC in the database."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class EnvelopeRow(Base):
    __tablename__ = "envelopes"

    __table_args__ = (
        # One shared envelope per name, soft-deleted or not
        Index(
            "idx_unique_shared_envelope_name",
            "name",
            unique=True,
            sqlite_where=text("user_id IS NULL"),
            postgresql_where=text("user_id IS NULL"),
        ),
        # One individual envelope per (name, user), soft-deleted or not
        Index(
            "idx_unique_individual_envelope_name_user",
            "name",
            "user_id",
            unique=True,
            sqlite_where=text("user_id IS NOT NULL"),
            postgresql_where=text("user_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    allocation: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    is_individual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rollover: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    transactions: Mapped[list["TransactionRow"]] = relationship(
        back_populates="envelope",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        owner = self.user_id or "shared"
        return f"<EnvelopeRow {self.id} {self.name!r} ({owner}) balance={self.balance}>"


class TransactionRow(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        Index("idx_transactions_envelope_timestamp", "envelope_id", "timestamp"),
        Index("idx_transactions_timestamp", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    envelope: Mapped[EnvelopeRow] = relationship(back_populates="transactions")


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    # Unit prices keep four decimal places (e.g. 10.00 / 3)
    price: Mapped[Decimal] = mapped_column(Money(scale=4), nullable=False)
    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    envelope: Mapped[EnvelopeRow] = relationship(lazy="joined")

    @property
    def envelope_name(self) -> str:
        return self.envelope.name


class SystemStateRow(Base):
    __tablename__ = "system_state"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
