"""PIN security and app lock."""

from budgee.services.security.lock import AppLockController
from budgee.services.security.pin import (
    PIN_REQUIRED_ON_STARTUP_KEY,
    PIN_SALT,
    PinSecurityModule,
    check_pin_strength,
    get_lock_timeout,
    hash_pin,
    validate_pin_format,
    verify_pin,
)

__all__ = [
    "PIN_REQUIRED_ON_STARTUP_KEY",
    "PIN_SALT",
    "AppLockController",
    "PinSecurityModule",
    "check_pin_strength",
    "get_lock_timeout",
    "hash_pin",
    "validate_pin_format",
    "verify_pin",
]
