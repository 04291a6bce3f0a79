"""Configuration package."""

from budgee.config.settings import (
    AppSettings,
    AssistantSettings,
    LedgerSettings,
    SecuritySettings,
    Settings,
    SpendingLimitSettings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "AssistantSettings",
    "LedgerSettings",
    "SecuritySettings",
    "Settings",
    "SpendingLimitSettings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
