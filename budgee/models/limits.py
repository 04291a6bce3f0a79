"""
Spending Limit Models

A SpendingLimit is configuration: a ceiling per category (or "overall")
over a rolling period. SpendingLimitState is the derived read model the UI
consumes; current_spending is never stored.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from budgee.models.ledger import ZERO, utc_now

OVERALL_LIMIT = "overall"


class LimitPeriod(str, Enum):
    """Window over which spend is accumulated."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LimitStatus(str, Enum):
    """Classification of spend against a limit."""
    OK = "ok"
    NEAR_LIMIT = "near_limit"
    EXCEEDED = "exceeded"

    @property
    def severity(self) -> int:
        return {LimitStatus.OK: 0, LimitStatus.NEAR_LIMIT: 1, LimitStatus.EXCEEDED: 2}[self]


class SpendingLimit(BaseModel):
    """A configured spending ceiling. amount == 0 means disabled."""

    type: str = Field(
        ...,
        min_length=1,
        description="TransactionCategory value or 'overall'"
    )
    amount: Decimal = Field(default=ZERO, ge=0)
    period: LimitPeriod = LimitPeriod.MONTHLY
    last_reset: datetime = Field(default_factory=utc_now)

    @property
    def is_enabled(self) -> bool:
        return self.amount > 0


class SpendingLimitState(BaseModel):
    """One row of the spending limit status read model."""

    type: str
    amount: Decimal
    period: LimitPeriod = LimitPeriod.MONTHLY
    current_spending: Decimal = ZERO
    percentage: Optional[float] = Field(
        default=None,
        description="current_spending / amount * 100; None when the limit is disabled"
    )
    remaining: Decimal = ZERO
    is_near_limit: bool = False
    is_exceeded: bool = False
    status: LimitStatus = LimitStatus.OK


class SpendingLimitStatusResponse(BaseModel):
    """The read model exposed to UI collaborators."""

    limits: list[SpendingLimitState] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def has_exceeded(self) -> bool:
        return any(limit.status == LimitStatus.EXCEEDED for limit in self.limits)

    @computed_field
    @property
    def has_warning(self) -> bool:
        return any(limit.status == LimitStatus.NEAR_LIMIT for limit in self.limits)

    @computed_field
    @property
    def overall_status(self) -> LimitStatus:
        if self.has_exceeded:
            return LimitStatus.EXCEEDED
        if self.has_warning:
            return LimitStatus.NEAR_LIMIT
        return LimitStatus.OK

    def get(self, limit_type: str) -> Optional[SpendingLimitState]:
        for limit in self.limits:
            if limit.type == limit_type:
                return limit
        return None


class SpendingAlert(BaseModel):
    """
    An alert to surface to the user.

    kind is EXCEEDED or NEAR_LIMIT, never both in one alert.
    """

    kind: LimitStatus
    types: list[str] = Field(default_factory=list)
    limits: list[SpendingLimitState] = Field(default_factory=list)

    @property
    def title(self) -> str:
        if self.kind == LimitStatus.EXCEEDED:
            return "Spending limit reached"
        return "Spending limit warning"
