"""
PIN Security Module

Protects app access behind a 6-digit PIN without ever persisting the PIN
in cleartext.

State machine per user:
    NoPin --setup_pin--> PinSet --remove_pin (after verify)--> NoPin
    PinSet also has a failed-attempt lockout, and an orthogonal
    Locked/Unlocked app axis handled by AppLockController.

CRITICAL: The raw PIN never reaches storage, logs or audit events.
Only hash_pin(pin) is stored.

DESIGN DECISION: The salt is one application-wide value (configurable
through BUDGEE_PIN_SALT). Moving to per-user random salts would change the
PinRecord shape and require migrating every stored digest, so it is left
as an explicit open question rather than changed silently.
"""

import hashlib
import hmac
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from budgee.audit import AuditLogger
from budgee.config import SecuritySettings, get_settings
from budgee.exceptions import AuthError, NotFoundError, PinLockedError, ValidationError, WeakPinError
from budgee.models.audit import AuditEventType, AuditSeverity
from budgee.models.ledger import utc_now
from budgee.models.security import PinFormatResult, PinRecord, PinStatus, PinStrengthResult
from budgee.models.validation import ValidationIssue
from budgee.services.storage import CorruptDataError, KeyValueStoreInterface

PIN_LENGTH = 6
PIN_SALT = "budgee_salt"
PIN_KEY = "budgee_pins"
PIN_REQUIRED_ON_STARTUP_KEY = "budgee_pin_required_on_startup"

# Lock immediately when the app loses foreground focus (milliseconds)
LOCK_TIMEOUT_MS = 0

COMMON_PINS = frozenset({
    "000000", "123456", "654321", "121212", "123123", "112233",
    "123321", "159753", "147258", "258369", "147852", "696969",
    "520520", "131313", "102030", "789456", "456789", "987654",
})

_DIGITS = frozenset("0123456789")

logger = structlog.get_logger(__name__)


# =============================================================================
# PURE PIN UTILITIES
# =============================================================================

def validate_pin_format(pin: Any) -> PinFormatResult:
    """
    Check that pin is exactly 6 ASCII digits.

    Rules run in order, so the error names the first rule that failed.
    """
    if not isinstance(pin, str) or not pin:
        return PinFormatResult(is_valid=False, error="PIN is required")
    if any(ch not in _DIGITS for ch in pin):
        return PinFormatResult(is_valid=False, error="PIN must contain only numbers")
    if len(pin) != PIN_LENGTH:
        return PinFormatResult(is_valid=False, error=f"PIN must be exactly {PIN_LENGTH} digits")
    return PinFormatResult(is_valid=True)


def _is_sequential(digits: list[int]) -> bool:
    steps = {(b - a) % 10 for a, b in zip(digits, digits[1:])}
    return steps == {1} or steps == {9}


def _is_repeated_unit(pin: str) -> bool:
    return any(
        len(pin) % size == 0 and pin == pin[:size] * (len(pin) // size)
        for size in (2, 3)
    )


def _is_chunked(pin: str, size: int) -> bool:
    """True when pin is made of runs like 112233 (size 2) or 111222 (size 3)."""
    if len(pin) % size:
        return False
    return all(len(set(pin[i:i + size])) == 1 for i in range(0, len(pin), size))


def check_pin_strength(pin: str) -> PinStrengthResult:
    """
    Reject guessable PINs.

    A weak PIN is a policy rejection, not a format error. Callers decide
    whether to warn-and-allow or hard-block.
    """
    format_result = validate_pin_format(pin)
    if not format_result.is_valid:
        return PinStrengthResult(is_strong=False, warning=format_result.error)

    if len(set(pin)) == 1:
        return PinStrengthResult(
            is_strong=False,
            warning="Repeating numbers are not secure. Please choose a different PIN.",
        )
    if _is_sequential([int(ch) for ch in pin]):
        return PinStrengthResult(
            is_strong=False,
            warning="Sequential numbers are not secure. Please choose a different PIN.",
        )
    if pin in COMMON_PINS:
        return PinStrengthResult(
            is_strong=False,
            warning="This PIN is too common. Please choose a more secure PIN.",
        )
    if _is_repeated_unit(pin):
        return PinStrengthResult(
            is_strong=False,
            warning="Repeating patterns are not secure. Please choose a different PIN.",
        )
    if _is_chunked(pin, 2) or _is_chunked(pin, 3):
        return PinStrengthResult(
            is_strong=False,
            warning="Paired or grouped digits are easy to guess. Please choose a different PIN.",
        )
    return PinStrengthResult(is_strong=True)


def hash_pin(pin: str, salt: str = PIN_SALT) -> str:
    """SHA-256 hex digest of pin + salt (64 lowercase hex chars)."""
    return hashlib.sha256((pin + salt).encode("utf-8")).hexdigest()


def verify_pin(pin: Any, stored_hash: Any, salt: str = PIN_SALT) -> bool:
    """Recompute and compare. Never raises; malformed input is simply False."""
    if not isinstance(pin, str) or not isinstance(stored_hash, str):
        return False
    try:
        candidate = hash_pin(pin, salt)
    except (UnicodeEncodeError, TypeError):
        return False
    return hmac.compare_digest(candidate, stored_hash)


def get_lock_timeout() -> int:
    """App re-lock delay in milliseconds. Policy constant, not a setting."""
    return LOCK_TIMEOUT_MS


# =============================================================================
# PIN SECURITY MODULE
# =============================================================================

class PinSecurityModule:
    """
    Owns every user's PinRecord and the device's PIN-required-on-startup flag.

    No other component reads pin_hash.
    """

    def __init__(
        self,
        storage: KeyValueStoreInterface,
        settings: Optional[SecuritySettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._settings = settings or get_settings().security
        self._audit = audit_logger
        self._clock = clock

    @property
    def max_failed_attempts(self) -> int:
        return self._settings.max_failed_attempts

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(minutes=self._settings.lockout_minutes)

    # ------------------------------------------------------------------
    # Record persistence
    # ------------------------------------------------------------------

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{PIN_KEY}_{user_id}"

    def _load(self, user_id: str) -> Optional[PinRecord]:
        raw = self._storage.get(self._key(user_id))
        if raw is None:
            return None
        try:
            record = PinRecord.model_validate(raw)
        except PydanticValidationError as e:
            raise CorruptDataError(f"Corrupt PIN record for user {user_id!r}") from e
        if record.user_id != user_id:
            raise CorruptDataError(f"PIN record under {user_id!r} belongs to another user")
        return record

    def _save(self, record: PinRecord) -> None:
        self._storage.set(self._key(record.user_id), record.model_dump(mode="json"))

    def _audit_event(
        self,
        event_type: AuditEventType,
        user_id: str,
        description: str,
        details: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> None:
        if self._audit:
            self._audit.log_pin_event(
                event_type=event_type,
                user_id=user_id,
                description=description,
                details=details,
                severity=severity,
            )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def has_pin(self, user_id: str) -> bool:
        return self._load(user_id) is not None

    def get_status(self, user_id: str) -> PinStatus:
        record = self._load(user_id)
        if record is None:
            return PinStatus.NOT_SET
        if record.is_locked(self._clock()):
            return PinStatus.LOCKED
        return PinStatus.SET

    def attempts_remaining(self, user_id: str) -> int:
        record = self._load(user_id)
        if record is None:
            return self.max_failed_attempts
        if record.locked_until is not None and not record.is_locked(self._clock()):
            return self.max_failed_attempts
        return max(self.max_failed_attempts - record.failed_attempts, 0)

    # ------------------------------------------------------------------
    # Setup / change / remove
    # ------------------------------------------------------------------

    def _check_new_pin(self, user_id: str, pin: Any, allow_weak: bool) -> None:
        format_result = validate_pin_format(pin)
        if not format_result.is_valid:
            raise ValidationError(
                format_result.error,
                issues=[ValidationIssue(
                    field="pin",
                    issue_type="invalid_format",
                    message=format_result.error,
                    severity="error",
                )],
            )

        strength = check_pin_strength(pin)
        if not strength.is_strong:
            if not allow_weak:
                raise WeakPinError(strength.warning)
            logger.warning("weak_pin_accepted", user_id=user_id, warning=strength.warning)

    def setup_pin(self, user_id: str, pin: str, allow_weak: bool = False) -> PinRecord:
        """
        Store a new PIN for user_id, replacing any existing record.

        Raises:
            ValidationError: If the PIN is not exactly 6 digits
            WeakPinError: If the PIN is guessable and allow_weak is False
        """
        self._check_new_pin(user_id, pin, allow_weak)

        now = self._clock()
        existing = self._load(user_id)
        record = PinRecord(
            user_id=user_id,
            pin_hash=hash_pin(pin, self._settings.salt),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._save(record)

        self._audit_event(
            AuditEventType.PIN_SETUP,
            user_id,
            "PIN replaced" if existing else "PIN set up",
        )
        return record

    def change_pin(
        self,
        user_id: str,
        current_pin: str,
        new_pin: str,
        allow_weak: bool = False,
    ) -> PinRecord:
        """
        Replace the PIN after verifying the current one.

        Raises:
            NotFoundError: If no PIN is set
            PinLockedError: If the PIN is locked out
            AuthError: If current_pin is wrong
            ValidationError / WeakPinError: As in setup_pin
        """
        if not self.verify(user_id, current_pin):
            raise AuthError(
                "Current PIN is incorrect",
                attempts_remaining=self.attempts_remaining(user_id),
            )
        self._check_new_pin(user_id, new_pin, allow_weak)

        record = self._load(user_id)
        updated = record.model_copy(update={
            "pin_hash": hash_pin(new_pin, self._settings.salt),
            "updated_at": self._clock(),
        })
        self._save(updated)

        self._audit_event(AuditEventType.PIN_CHANGED, user_id, "PIN changed")
        return updated

    def remove_pin(self, user_id: str, pin: str) -> bool:
        """
        Delete the PIN after verifying it, and clear the startup flag.

        Returns:
            False if no PIN was set, True once removed

        Raises:
            AuthError: If pin does not verify (PinLockedError while locked out)
        """
        if not self.has_pin(user_id):
            return False
        if not self.verify(user_id, pin):
            raise AuthError(
                "Incorrect PIN",
                attempts_remaining=self.attempts_remaining(user_id),
            )

        self._storage.delete(self._key(user_id))
        self.clear_pin_required_on_startup()

        self._audit_event(AuditEventType.PIN_REMOVED, user_id, "PIN removed")
        return True

    # ------------------------------------------------------------------
    # Verification with lockout
    # ------------------------------------------------------------------

    def verify(self, user_id: str, pin: Any) -> bool:
        """
        Check pin against the stored digest, counting failures.

        Returns:
            True on success, False on a wrong PIN that did not trigger lockout

        Raises:
            NotFoundError: If no PIN is set for user_id
            PinLockedError: If locked out now, or this failure caused lockout
        """
        record = self._load(user_id)
        if record is None:
            raise NotFoundError(f"No PIN set for user {user_id!r}")

        now = self._clock()
        if record.is_locked(now):
            raise PinLockedError(
                "Too many failed attempts. Try again later.",
                locked_until=record.locked_until,
            )
        if record.locked_until is not None:
            # Lockout elapsed; start counting afresh
            record = record.model_copy(update={"failed_attempts": 0, "locked_until": None})

        if verify_pin(pin, record.pin_hash, self._settings.salt):
            self._save(record.model_copy(update={
                "failed_attempts": 0,
                "locked_until": None,
                "last_used": now,
            }))
            self._audit_event(AuditEventType.PIN_VERIFIED, user_id, "PIN verified")
            return True

        failed = record.failed_attempts + 1
        if failed >= self.max_failed_attempts:
            locked_until = now + self.lockout_duration
            self._save(record.model_copy(update={
                "failed_attempts": failed,
                "locked_until": locked_until,
            }))
            logger.warning("pin_locked_out", user_id=user_id, locked_until=locked_until.isoformat())
            if self._audit:
                self._audit.log_pin_locked_out(user_id, locked_until)
            raise PinLockedError(
                "Too many failed attempts. Try again later.",
                locked_until=locked_until,
            )

        self._save(record.model_copy(update={"failed_attempts": failed}))
        self._audit_event(
            AuditEventType.PIN_VERIFICATION_FAILED,
            user_id,
            "Incorrect PIN entered",
            details={"attempts_remaining": self.max_failed_attempts - failed},
            severity=AuditSeverity.WARNING,
        )
        return False

    # ------------------------------------------------------------------
    # PIN-required-on-startup device flag
    # ------------------------------------------------------------------

    def is_pin_required_on_startup(self) -> bool:
        return self._storage.get(PIN_REQUIRED_ON_STARTUP_KEY) is True

    def mark_pin_required_on_startup(self) -> None:
        self._storage.set(PIN_REQUIRED_ON_STARTUP_KEY, True)

    def clear_pin_required_on_startup(self) -> None:
        self._storage.delete(PIN_REQUIRED_ON_STARTUP_KEY)
