"""
Core Data Models for Envelope Ledger

These models are what the engine hands back to callers.
They are designed to:
1. Enforce type safety at runtime
2. Be built straight from storage rows (from_attributes)
3. Be serializable for logging and for any presentation layer
4. Never carry formatted text

DESIGN DECISION: Money is Decimal, never float.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """
    Kinds of balance-affecting events.

    The amount on a transaction is always a positive magnitude.
    The sign of its effect on the balance comes from the kind.
    """
    SPEND = "spend"
    DEPOSIT = "deposit"
    ADJUSTMENT = "adjustment"
    # Reserved for future split and recurring entries
    SPLIT = "split"
    RECURRING = "recurring"

    @property
    def is_reserved(self) -> bool:
        return self in (TransactionKind.SPLIT, TransactionKind.RECURRING)

    @property
    def is_debit(self) -> bool:
        return self is TransactionKind.SPEND

    def signed(self, amount: Decimal) -> Decimal:
        """Effect of `amount` on a balance for this kind."""
        return -amount if self.is_debit else amount


# =============================================================================
# ENTITIES
# =============================================================================

class Envelope(BaseModel):
    """
    A named budget bucket.

    Shared envelopes have no owner. An individual envelope type has
    exactly two instances, one per configured user.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    allocation: Decimal
    balance: Decimal
    is_individual: bool = False
    user_id: Optional[str] = Field(
        default=None,
        description="Owner for individual envelopes, None when shared"
    )
    rollover: bool = False
    is_deleted: bool = False

    @property
    def is_shared(self) -> bool:
        return self.user_id is None

    @property
    def is_overdrawn(self) -> bool:
        return self.balance < 0


class Transaction(BaseModel):
    """
    An immutable ledger entry.

    CRITICAL: Transactions are never edited. Corrections are new entries.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    envelope_id: int
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive magnitude; sign comes from transaction_type"
    )
    description: str = ""
    timestamp: datetime
    user_id: str = Field(
        ...,
        description="User who initiated the transaction"
    )
    message_id: Optional[str] = Field(
        default=None,
        description="External correlation id (e.g. the command message)"
    )
    transaction_type: TransactionKind

    @property
    def signed_amount(self) -> Decimal:
        return self.transaction_type.signed(self.amount)


class Product(BaseModel):
    """
    A named fixed-price item.

    The target is an envelope *type*: at consume time it resolves to the
    shared envelope or to the consuming user's individual instance.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: Decimal = Field(
        ...,
        gt=0,
        description="Unit price"
    )
    envelope_id: int
    envelope_name: str
    description: Optional[str] = None


# =============================================================================
# INPUTS
# =============================================================================

class EnvelopeSeed(BaseModel):
    """One envelope definition fed through startup seeding."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(..., min_length=1, max_length=100)
    allocation: Decimal = Field(..., ge=0, decimal_places=2)
    is_individual: bool = False
    rollover: bool = False


# =============================================================================
# RESULTS
# =============================================================================

class SeedResult(BaseModel):
    """Outcome of seeding: which seeds were applied and which were skipped."""

    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(
        default_factory=list,
        description="Seeds whose envelope was already active"
    )
    envelope_ids: list[int] = Field(default_factory=list)


class RecordResult(BaseModel):
    """Result of recording one transaction."""

    transaction: Transaction
    new_balance: Decimal
    overdraft: bool = Field(
        ...,
        description="True when the new balance is negative. Not an error."
    )


class ProductConsumeResult(BaseModel):
    """Result of consuming a product."""

    product: Product
    quantity: int = Field(..., ge=1)
    unit_price: Decimal
    total_cost: Decimal
    envelope: Envelope = Field(
        ...,
        description="The envelope instance the cost was charged to"
    )
    transaction: Transaction
    new_balance: Decimal
    overdraft: bool
