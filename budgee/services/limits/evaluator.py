"""
Spending Limit Evaluator

Classifies current spend against configured limits with two-tier severity:

    percentage = current_spending / amount * 100
    >= 100  -> EXCEEDED
    >= 80   -> NEAR_LIMIT
    else    -> OK
    amount == 0 -> disabled (percentage None, OK)

DESIGN DECISION: Classification is strict and stateless. Flapping
suppression lives in SpendingAlertTracker, which only re-surfaces a
severity after spend has dropped a hysteresis margin below its threshold.
So the read model always tells the truth, and the user is only
interrupted on a genuine state change.

ALERT PRECEDENCE: if any limit is exceeded, only an "exceeded" alert is
shown (listing every exceeded limit). A near-limit alert is shown only
when nothing is exceeded.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import structlog

from budgee.audit import AuditLogger
from budgee.config import SpendingLimitSettings, get_settings
from budgee.exceptions import BudgeeError
from budgee.models.ledger import ZERO, utc_now
from budgee.models.limits import (
    LimitStatus,
    SpendingAlert,
    SpendingLimit,
    SpendingLimitState,
    SpendingLimitStatusResponse,
)
from budgee.services.ledger import BalanceReconciler
from budgee.services.limits.store import SpendingLimitStore
from budgee.services.storage import StorageError

DEFAULT_NEAR_LIMIT_PERCENT = 80.0
EXCEEDED_PERCENT = 100.0

logger = structlog.get_logger(__name__)


def classify(
    amount: Decimal,
    current_spending: Decimal,
    near_limit_percent: float = DEFAULT_NEAR_LIMIT_PERCENT,
) -> tuple[Optional[float], LimitStatus]:
    """Percentage of the limit used, and its status."""
    if amount <= 0:
        return None, LimitStatus.OK

    ratio = current_spending * 100 / amount
    if ratio >= Decimal(str(EXCEEDED_PERCENT)):
        status = LimitStatus.EXCEEDED
    elif ratio >= Decimal(str(near_limit_percent)):
        status = LimitStatus.NEAR_LIMIT
    else:
        status = LimitStatus.OK
    return float(ratio), status


def build_limit_state(
    limit: SpendingLimit,
    current_spending: Decimal,
    near_limit_percent: float = DEFAULT_NEAR_LIMIT_PERCENT,
) -> SpendingLimitState:
    percentage, status = classify(limit.amount, current_spending, near_limit_percent)
    return SpendingLimitState(
        type=limit.type,
        amount=limit.amount,
        period=limit.period,
        current_spending=current_spending,
        percentage=percentage,
        remaining=max(limit.amount - current_spending, ZERO) if limit.is_enabled else ZERO,
        is_near_limit=percentage is not None and percentage >= near_limit_percent,
        is_exceeded=percentage is not None and percentage >= EXCEEDED_PERCENT,
        status=status,
    )


def _limit_key(state: SpendingLimitState) -> str:
    return f"{state.type}:{state.period.value}"


class SpendingAlertTracker:
    """
    Remembers which severity has been surfaced per limit, per user.

    A limit re-surfaces only when:
    - its severity escalates (OK -> NEAR_LIMIT -> EXCEEDED), or
    - it falls below (threshold - hysteresis), which releases that
      severity, and later crosses the threshold again.

    Oscillating around a threshold therefore produces one alert, not many.
    """

    def __init__(
        self,
        hysteresis_percent: float = 5.0,
        near_limit_percent: float = DEFAULT_NEAR_LIMIT_PERCENT,
    ):
        self.hysteresis_percent = hysteresis_percent
        self.near_limit_percent = near_limit_percent
        self._surfaced: dict[str, dict[str, LimitStatus]] = {}

    def surfaced(self, user_id: str, state: SpendingLimitState) -> LimitStatus:
        return self._surfaced.get(user_id, {}).get(_limit_key(state), LimitStatus.OK)

    def _released(self, previous: LimitStatus, percentage: Optional[float]) -> LimitStatus:
        if percentage is None:
            return LimitStatus.OK
        if previous == LimitStatus.EXCEEDED and percentage < EXCEEDED_PERCENT - self.hysteresis_percent:
            previous = LimitStatus.NEAR_LIMIT
        if previous == LimitStatus.NEAR_LIMIT and percentage < self.near_limit_percent - self.hysteresis_percent:
            previous = LimitStatus.OK
        return previous

    def update(self, user_id: str, states: list[SpendingLimitState]) -> list[SpendingLimitState]:
        """
        Record the latest states.

        Returns:
            States whose severity should be surfaced now
        """
        memory = self._surfaced.setdefault(user_id, {})
        fresh = []
        for state in states:
            key = _limit_key(state)
            previous = self._released(memory.get(key, LimitStatus.OK), state.percentage)
            if state.status.severity > previous.severity:
                fresh.append(state)
                previous = state.status
            memory[key] = previous
        return fresh

    def reset(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._surfaced.clear()
        else:
            self._surfaced.pop(user_id, None)


class SpendingLimitEvaluator:
    """
    Builds the spending limit read model and decides which alerts to raise.

    Invoked opportunistically (on data-update, on a timer, on page load),
    so it never raises: when dependencies are missing or storage fails it
    returns None.
    """

    def __init__(
        self,
        reconciler: Optional[BalanceReconciler] = None,
        limit_store: Optional[SpendingLimitStore] = None,
        settings: Optional[SpendingLimitSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        tracker: Optional[SpendingAlertTracker] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._reconciler = reconciler
        self._limit_store = limit_store
        self._settings = settings or get_settings().limits
        self._clock = clock
        self._tracker = tracker or SpendingAlertTracker(
            hysteresis_percent=self._settings.hysteresis_percent,
            near_limit_percent=self._settings.near_limit_percent,
        )
        self._audit = audit_logger

    @property
    def tracker(self) -> SpendingAlertTracker:
        return self._tracker

    @property
    def is_ready(self) -> bool:
        return (
            self._reconciler is not None
            and self._reconciler.is_ready
            and self._limit_store is not None
        )

    def get_status(self, user_id: str) -> Optional[SpendingLimitStatusResponse]:
        """Current state of every configured limit, or None if unavailable."""
        if not self.is_ready:
            logger.debug("limit_status_unavailable", user_id=user_id, reason="not_ready")
            return None

        now = self._clock()
        try:
            limits, changed = self._limit_store.reset_elapsed(
                self._limit_store.get_limits(user_id), now
            )
            if changed:
                self._limit_store.save_limits(user_id, limits)

            states = []
            for limit in limits:
                spending = self._reconciler.spending_for(
                    user_id,
                    category=limit.type,
                    start=limit.last_reset.date(),
                    end=now.date(),
                )
                states.append(build_limit_state(limit, spending, self._settings.near_limit_percent))
        except (StorageError, BudgeeError) as e:
            logger.warning("limit_status_unavailable", user_id=user_id, error=str(e))
            return None

        return SpendingLimitStatusResponse(limits=states, evaluated_at=now)

    @staticmethod
    def select_alert(status: Optional[SpendingLimitStatusResponse]) -> Optional[SpendingAlert]:
        """Apply alert precedence: exceeded beats near-limit. Disabled limits never alert."""
        if status is None:
            return None

        for kind in (LimitStatus.EXCEEDED, LimitStatus.NEAR_LIMIT):
            matching = [
                state for state in status.limits
                if state.status == kind and state.percentage is not None
            ]
            if matching:
                types = list(dict.fromkeys(state.type for state in matching))
                return SpendingAlert(kind=kind, types=types, limits=matching)
        return None

    def check(self, user_id: str) -> Optional[SpendingAlert]:
        """
        Evaluate and return an alert only if something newly needs surfacing.

        Repeated calls with unchanged data return None after the first alert.
        The alert is chosen from the full status, so a limit newly nearing
        stays quiet while another one is still exceeded.
        """
        status = self.get_status(user_id)
        if status is None:
            return None

        fresh = self._tracker.update(user_id, status.limits)
        alert = self.select_alert(status)
        if alert is None:
            return None
        fresh_keys = {(state.type, state.period) for state in fresh}
        if not any((state.type, state.period) in fresh_keys for state in alert.limits):
            return None

        logger.info("spending_alert", user_id=user_id, kind=alert.kind.value, types=alert.types)
        if self._audit:
            self._audit.log_spending_alert(user_id, alert.kind.value, alert.types)
        return alert
