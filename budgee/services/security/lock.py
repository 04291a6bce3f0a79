"""
App Lock Controller

The Locked/Unlocked axis of a PIN-protected app. Orthogonal to whether a
PIN is set: only users with a PIN are ever locked.

Lifecycle hooks come from the host (foreground/background transitions and
app startup). The lock timeout is get_lock_timeout() == 0, so the app is
locked the instant it loses focus.

Lock state is held per session in memory. The only durable piece is the
device-wide PIN-required-on-startup flag, which lives in the PIN module.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from budgee.audit import AuditLogger
from budgee.models.audit import AuditEventType
from budgee.models.ledger import utc_now
from budgee.models.security import AppLockState
from budgee.services.security.pin import PinSecurityModule, get_lock_timeout

logger = structlog.get_logger(__name__)


class AppLockController:
    """Drives AppLockState from host lifecycle events."""

    def __init__(
        self,
        pin_module: PinSecurityModule,
        clock: Callable[[], datetime] = utc_now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._pins = pin_module
        self._clock = clock
        self._audit = audit_logger
        self._states: dict[str, AppLockState] = {}

    def state(self, user_id: str) -> AppLockState:
        return self._states.setdefault(user_id, AppLockState())

    def is_locked(self, user_id: str) -> bool:
        return self.state(user_id).is_locked

    def _engage(self, user_id: str, reason: str) -> None:
        state = self.state(user_id)
        state.is_locked = True
        state.lock_triggered_at = self._clock()
        state.should_require_pin = True
        state.session_verified = False
        logger.info("app_locked", user_id=user_id, reason=reason)
        if self._audit:
            self._audit.log_pin_event(
                event_type=AuditEventType.APP_LOCKED,
                user_id=user_id,
                description="App locked",
                details={"reason": reason},
            )

    def lock(self, user_id: str) -> bool:
        """Force a lock. Returns False when the user has no PIN."""
        if not self._pins.has_pin(user_id):
            return False
        self._engage(user_id, "manual")
        return True

    def on_background(self, user_id: str) -> None:
        """App lost focus: lock now and require the PIN on next startup."""
        if not self._pins.has_pin(user_id):
            return
        self._engage(user_id, "background")
        self._pins.mark_pin_required_on_startup()

    def on_foreground(self, user_id: str) -> bool:
        """
        App regained focus.

        Returns:
            True if the PIN must be entered before showing data
        """
        state = self.state(user_id)
        if not state.is_locked or state.session_verified:
            return False
        if not self._pins.has_pin(user_id):
            state.is_locked = False
            state.should_require_pin = False
            return False

        elapsed_ms = (self._clock() - state.lock_triggered_at).total_seconds() * 1000
        state.should_require_pin = elapsed_ms >= get_lock_timeout()
        return state.should_require_pin

    def check_on_startup(self, user_id: str) -> bool:
        """
        App launched. Lock if the startup flag is set.

        A stale flag with no PIN behind it is cleared.
        """
        if not self._pins.is_pin_required_on_startup():
            return False
        if not self._pins.has_pin(user_id):
            self._pins.clear_pin_required_on_startup()
            return False
        if self.state(user_id).session_verified:
            return False
        self._engage(user_id, "startup")
        return True

    def unlock(self, user_id: str, pin: str) -> bool:
        """
        Verify the PIN and unlock on success.

        Raises:
            NotFoundError: If no PIN is set
            PinLockedError: While the PIN is locked out
        """
        if not self._pins.verify(user_id, pin):
            return False

        state = self.state(user_id)
        state.is_locked = False
        state.should_require_pin = False
        state.session_verified = True
        if self._audit:
            self._audit.log_pin_event(
                event_type=AuditEventType.APP_UNLOCKED,
                user_id=user_id,
                description="App unlocked",
            )
        return True

    def reset(self, user_id: str) -> None:
        """Forget session state (logout)."""
        self._states.pop(user_id, None)
