"""
Spending Limit Store

Per-user spending limit configuration, kept under
budgee_spending_limits_<user_id>.

A limit is identified by its (type, period) pair: a user can hold a
monthly "Food" limit and a weekly "Food" limit at the same time.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from budgee.exceptions import ValidationError
from budgee.models.ledger import TransactionCategory, utc_now
from budgee.models.limits import OVERALL_LIMIT, LimitPeriod, SpendingLimit
from budgee.models.validation import ValidationIssue
from budgee.services.storage import CorruptDataError, KeyValueStoreInterface

LIMITS_KEY = "budgee_spending_limits"

VALID_LIMIT_TYPES = frozenset({OVERALL_LIMIT} | {c.value for c in TransactionCategory})

logger = structlog.get_logger(__name__)


def _invalid(field: str, message: str) -> ValidationError:
    return ValidationError(
        message,
        issues=[ValidationIssue(field=field, issue_type="invalid_value", message=message, severity="error")],
    )


def period_elapsed(limit: SpendingLimit, now: datetime) -> bool:
    """
    Whether the limit's window has rolled over.

    Daily resets after 24 hours, weekly after 7 days, monthly when the
    calendar month changes.
    """
    if limit.period == LimitPeriod.DAILY:
        return (now - limit.last_reset).total_seconds() >= 24 * 60 * 60
    if limit.period == LimitPeriod.WEEKLY:
        return (now - limit.last_reset).days >= 7
    return (limit.last_reset.year, limit.last_reset.month) != (now.year, now.month)


class SpendingLimitStore:
    """CRUD over a user's spending limits."""

    def __init__(
        self,
        storage: KeyValueStoreInterface,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._clock = clock

    @staticmethod
    def _key(user_id: str) -> str:
        return f"{LIMITS_KEY}_{user_id}"

    def get_limits(self, user_id: str) -> list[SpendingLimit]:
        raw = self._storage.get(self._key(user_id))
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CorruptDataError(f"Spending limits for user {user_id!r} are not a list")
        try:
            return [SpendingLimit.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            raise CorruptDataError(f"Corrupt spending limit for user {user_id!r}: {e}") from e

    def save_limits(self, user_id: str, limits: list[SpendingLimit]) -> None:
        self._storage.set(self._key(user_id), [limit.model_dump(mode="json") for limit in limits])

    def set_limit(
        self,
        user_id: str,
        limit_type: str,
        amount: Union[Decimal, int, str],
        period: LimitPeriod = LimitPeriod.MONTHLY,
    ) -> SpendingLimit:
        """
        Create or replace the (limit_type, period) limit. amount 0 disables it.

        Raises:
            ValidationError: If limit_type is unknown or amount is negative/not finite
        """
        if limit_type not in VALID_LIMIT_TYPES:
            raise _invalid("type", f"Unknown limit type {limit_type!r}")
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            raise _invalid("amount", "Limit amount must be a number") from None
        if not value.is_finite() or value < 0:
            raise _invalid("amount", "Limit amount must be a finite number of zero or more")

        period = LimitPeriod(period)
        limits = self.get_limits(user_id)
        for index, limit in enumerate(limits):
            if limit.type == limit_type and limit.period == period:
                limits[index] = limit.model_copy(update={"amount": value})
                break
        else:
            limits.append(SpendingLimit(
                type=limit_type,
                amount=value,
                period=period,
                last_reset=self._clock(),
            ))
        self.save_limits(user_id, limits)

        logger.info("spending_limit_set", user_id=user_id, type=limit_type, period=period.value, amount=str(value))
        return next(item for item in limits if item.type == limit_type and item.period == period)

    def initialize_default_limits(self, user_id: str) -> list[SpendingLimit]:
        """Ensure a disabled "overall" limit exists for each period."""
        limits = self.get_limits(user_id)
        present = {(limit.type, limit.period) for limit in limits}
        added = False
        for period in LimitPeriod:
            if (OVERALL_LIMIT, period) not in present:
                limits.append(SpendingLimit(type=OVERALL_LIMIT, period=period, last_reset=self._clock()))
                added = True
        if added:
            self.save_limits(user_id, limits)
        return limits

    @staticmethod
    def reset_elapsed(
        limits: list[SpendingLimit],
        now: Optional[datetime] = None,
    ) -> tuple[list[SpendingLimit], bool]:
        """
        Move last_reset to now for every limit whose period has rolled over.

        Returns:
            (limits, changed) where changed tells the caller to save
        """
        now = now or utc_now()
        changed = False
        result = []
        for limit in limits:
            if period_elapsed(limit, now):
                limit = limit.model_copy(update={"last_reset": now})
                changed = True
            result.append(limit)
        return result, changed

    def clear(self, user_id: str) -> None:
        self._storage.delete(self._key(user_id))
