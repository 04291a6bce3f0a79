"""
Security Models

CRITICAL: PinRecord holds a one-way digest only. The raw PIN never
reaches storage, logs or audit events.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from budgee.models.ledger import utc_now


class PinStatus(str, Enum):
    """PIN state for a user as seen by the lock screen."""
    NOT_SET = "not-set"
    SET = "set"
    LOCKED = "locked"  # failed-attempt lockout in force


class PinRecord(BaseModel):
    """Stored PIN digest plus failed-attempt bookkeeping."""

    user_id: str = Field(..., min_length=1)
    pin_hash: str = Field(..., min_length=64, max_length=64)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    failed_attempts: int = Field(default=0, ge=0)
    locked_until: Optional[datetime] = None
    last_used: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


class PinFormatResult(BaseModel):
    """Result of validate_pin_format."""

    is_valid: bool
    error: Optional[str] = None


class PinStrengthResult(BaseModel):
    """Result of check_pin_strength. A weak PIN is not a format error."""

    is_strong: bool
    warning: Optional[str] = None


class AppLockState(BaseModel):
    """Locked/Unlocked axis of the app, orthogonal to whether a PIN is set."""

    is_locked: bool = False
    lock_triggered_at: Optional[datetime] = None
    should_require_pin: bool = False
    session_verified: bool = False
