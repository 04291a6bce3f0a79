"""
Configuration Management for Budgee Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable threshold (lockout, limits, sanity checks) is visible in one
place and validated at startup.

NOTE: The app-lock timeout is NOT configurable. It is a policy constant
(see budgee.services.security.pin.get_lock_timeout).
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Persistence substrate configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGEE_STORAGE_",
        extra="ignore"
    )

    backend: Literal["memory", "json"] = Field(
        default="json",
        description="Which key-value substrate to use"
    )
    data_dir: str = Field(
        default=".budgee",
        description="Directory for the JSON file substrate"
    )

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


class SecuritySettings(BaseSettings):
    """PIN security configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGEE_PIN_",
        extra="ignore"
    )

    salt: str = Field(
        default="budgee_salt",
        min_length=1,
        description="Application-wide salt appended to the PIN before hashing"
    )
    max_failed_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Failed verifications before the PIN is locked out"
    )
    lockout_minutes: int = Field(
        default=15,
        ge=1,
        le=24 * 60,
        description="How long a lockout lasts"
    )


class LedgerSettings(BaseSettings):
    """Sanity thresholds for ledger input (warnings, not errors)."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGEE_LEDGER_",
        extra="ignore"
    )

    max_transaction_amount: float = Field(
        default=10_000_000.0,
        gt=0,
        description="Amounts above this are flagged as suspicious"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a transaction date can be"
    )


class SpendingLimitSettings(BaseSettings):
    """Spending limit evaluation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGEE_LIMITS_",
        extra="ignore"
    )

    near_limit_percent: float = Field(
        default=80.0,
        gt=0,
        lt=100,
        description="Percentage of a limit at which the near-limit alert fires"
    )
    hysteresis_percent: float = Field(
        default=5.0,
        ge=0,
        lt=50,
        description="How far spend must fall below a threshold before its alert re-arms"
    )
    poll_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Polling interval for the spending limit monitor"
    )


class AssistantSettings(BaseSettings):
    """Gemini configuration for the optional finance assistant."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key; the assistant is unavailable without it"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature"
    )
    recent_transactions: int = Field(
        default=10,
        ge=1,
        le=100,
        description="How many recent transactions the assistant sees"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def security(self) -> SecuritySettings:
        return SecuritySettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def limits(self) -> SpendingLimitSettings:
        return SpendingLimitSettings()

    @property
    def assistant(self) -> AssistantSettings:
        return AssistantSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    entries for the groups that failed. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("storage", "security", "ledger", "limits", "assistant", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
