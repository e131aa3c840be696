"""
Ledger Exceptions

Every failure a caller can see is one of these.
Overdraft is NOT here - it is a flag on a successful result.
An already-processed month is NOT here either - it is a returned value.
"""

from decimal import Decimal
from typing import Optional, Union


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotFoundError(LedgerError):
    """Envelope, product or transaction not found."""

    def __init__(self, entity_type: str, key: object, message: Optional[str] = None):
        self.entity_type = entity_type
        self.key = key
        super().__init__(message or f"{entity_type.capitalize()} not found: {key}")


class AlreadyExistsError(LedgerError):
    """An active entity with the same identity already exists."""

    def __init__(self, entity_type: str, key: object, message: Optional[str] = None):
        self.entity_type = entity_type
        self.key = key
        super().__init__(message or f"{entity_type.capitalize()} already exists: {key}")


class InvalidAmountError(LedgerError, ValueError):
    """Amount is non-finite, NaN, negative or zero."""

    def __init__(self, amount: Union[Decimal, float, int, str, None], message: Optional[str] = None):
        self.amount = amount
        super().__init__(message or f"Invalid amount: {amount}")


class InvalidQuantityError(LedgerError, ValueError):
    """Quantity is not a positive integer."""

    def __init__(self, quantity: object):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class InvalidNameError(LedgerError, ValueError):
    """Name is empty or whitespace-only."""
    pass


class EnvelopeUnavailableError(LedgerError):
    """Target envelope exists but is soft-deleted."""

    def __init__(self, envelope_name: str):
        self.envelope_name = envelope_name
        super().__init__(f"Envelope is deleted: {envelope_name}")


class UnsupportedKindError(LedgerError):
    """Transaction kind is reserved and cannot be recorded yet."""
    pass


class ConfigurationError(LedgerError):
    """Ledger configuration is inconsistent (e.g. wrong number of users)."""
    pass


class StorageFailure(LedgerError):
    """
    A unit of work could not commit.

    Nothing from the unit was applied, so the whole operation
    is safe to retry.
    """
    pass


class UnknownOperationError(LedgerError, KeyError):
    """Operation name is not in the operation table."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown operation: {name}")

    def __str__(self) -> str:
        return self.args[0]
