"""
Configuration Management for Envelope Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what the ledger depends on and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Persistent store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///envelope_ledger.db",
        description="SQLAlchemy database URL"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="How long a unit of work waits for a competing writer"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement (debugging only)"
    )


class HouseholdSettings(BaseSettings):
    """
    The two people sharing the ledger.

    Individual envelope types always get one instance per configured user.
    """

    model_config = SettingsConfigDict(
        env_prefix="COUPLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    user_id_1: str = Field(
        ...,
        min_length=1,
        description="External identity of the first user"
    )
    user_id_2: str = Field(
        ...,
        min_length=1,
        description="External identity of the second user"
    )

    @model_validator(mode='after')
    def validate_distinct_users(self) -> 'HouseholdSettings':
        if self.user_id_1 == self.user_id_2:
            raise ValueError("COUPLE_USER_ID_1 and COUPLE_USER_ID_2 must differ")
        return self

    @property
    def user_ids(self) -> tuple[str, str]:
        return (self.user_id_1, self.user_id_2)


class LedgerSettings(BaseSettings):
    """
    Ledger behavior settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # History
    retention_months: int = Field(
        default=13,
        ge=1,
        le=120,
        description="Calendar months of transactions kept, current month included"
    )

    # Pace thresholds (ratio of spent-from-allocation to expected pace)
    caution_ratio: float = Field(
        default=1.0,
        gt=0,
        description="Above this ratio an envelope is no longer on track"
    )
    over_pace_ratio: float = Field(
        default=1.25,
        gt=0,
        description="Above this ratio an envelope is over pace"
    )

    # Defaults for new envelopes
    default_category: str = Field(
        default="uncategorized",
        min_length=1,
        description="Category given to envelopes created without one"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode='after')
    def validate_thresholds(self) -> 'LedgerSettings':
        if self.over_pace_ratio < self.caution_ratio:
            raise ValueError("over_pace_ratio cannot be below caution_ratio")
        return self


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def household(self) -> HouseholdSettings:
        return HouseholdSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "household", "ledger"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
