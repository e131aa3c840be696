"""
Money Handling

DESIGN DECISION: Money is a Decimal everywhere in the API and an integer
count of minor units in storage. Binary floats are accepted as input
(callers parse user text) but converted through their shortest repr,
so 0.1 becomes Decimal("0.1") rather than 0.1000000000000000055...

The engine never trusts callers: every amount is re-validated here.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from envelope_ledger.errors import InvalidAmountError, InvalidQuantityError

Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
UNIT_PRICE_STEP = Decimal("0.0001")
ZERO = Decimal("0")


def to_decimal(value: Amount) -> Decimal:
    """Convert input to a finite Decimal or raise InvalidAmountError."""
    if isinstance(value, bool):
        raise InvalidAmountError(value)
    try:
        if isinstance(value, float):
            result = Decimal(repr(value))
        else:
            result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(value)
    if not result.is_finite():
        raise InvalidAmountError(value)
    return result


def quantize_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_unit_price(value: Decimal) -> Decimal:
    return value.quantize(UNIT_PRICE_STEP, rounding=ROUND_HALF_UP)


def positive_amount(value: Amount) -> Decimal:
    """
    Validate a transaction amount.

    Zero is rejected: a null-effect transaction is meaningless.
    Amounts that round to zero cents are rejected for the same reason.
    """
    amount = to_decimal(value)
    if amount <= ZERO:
        raise InvalidAmountError(value)
    amount = quantize_cents(amount)
    if amount == ZERO:
        raise InvalidAmountError(value, f"Amount rounds to zero: {value}")
    return amount


def allocation_amount(value: Amount) -> Decimal:
    """Validate a monthly allocation (zero allowed, negative not)."""
    amount = to_decimal(value)
    if amount < ZERO:
        raise InvalidAmountError(value, f"Allocation cannot be negative: {value}")
    return quantize_cents(amount)


def positive_quantity(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidQuantityError(value)
    return value
