"""Configuration package."""

from envelope_ledger.config.settings import (
    DatabaseSettings,
    HouseholdSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "DatabaseSettings",
    "HouseholdSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
