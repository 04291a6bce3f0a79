"""
Ledger Data Models for Budgee Core

These models define the strict schemas for accounts, transactions and
savings allocations. They are designed to:
1. Enforce type safety at runtime
2. Keep money in Decimal (never float) end to end
3. Be JSON-serializable for the key-value persistence substrate
4. Make partial updates explicit (every update field optional, only set fields merge)

DESIGN DECISION: The sign of Transaction.amount is the ONLY thing that decides
income vs. expense. The category never does.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

# Field names below shadow `date`; annotate through this alias.
CalendarDate = date

ZERO = Decimal("0")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Fresh unique identifier such as 'acc_3f2a9c...'."""
    return f"{prefix}_{uuid4().hex}"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Supported account types."""
    CASH = "Cash"
    BANK = "Bank"
    E_WALLET = "E-Wallet"
    CRYPTO = "Crypto"
    CREDIT = "Credit"


class TransactionCategory(str, Enum):
    """
    Closed set of transaction categories.

    NOTE: INCOME is a label only. A negative amount in the Income category
    still counts as an expense.
    """
    INCOME = "Income"
    HOUSING = "Housing"
    FOOD = "Food"
    TRANSPORTATION = "Transportation"
    ENTERTAINMENT = "Entertainment"
    UTILITIES = "Utilities"
    OTHER = "Other"


class SavingsAllocationType(str, Enum):
    """Direction of a savings allocation."""
    DEPOSIT = "deposit"        # account -> savings
    WITHDRAWAL = "withdrawal"  # savings -> account


# =============================================================================
# STORED ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    A money container owned by one user.

    INVARIANT: balance == opening_balance
                          + sum(transaction amounts on this account)
                          - sum(savings deposits from this account)
                          + sum(savings withdrawals into this account)
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: new_id("acc"))
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance: Decimal = Field(default=ZERO, description="Current stored balance")
    opening_balance: Decimal = Field(
        default=ZERO,
        description="Balance at creation, shifted by corrective resets"
    )
    last_four: Optional[str] = Field(default=None, max_length=10)
    is_active: bool = True
    verified: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Transaction(BaseModel):
    """A single signed movement of money on one account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: new_id("txn"))
    user_id: str = Field(..., min_length=1)
    account_id: str
    description: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=1000)
    category: TransactionCategory
    amount: Decimal = Field(
        ...,
        description="Positive = income/credit, negative = expense/debit"
    )
    date: CalendarDate
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_income(self) -> bool:
        return self.amount > 0

    @property
    def is_expense(self) -> bool:
        return self.amount < 0


class SavingsAllocation(BaseModel):
    """Money moved between an account and the user's savings pot."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=lambda: new_id("sav"))
    user_id: str = Field(..., min_length=1)
    from_account_id: str
    type: SavingsAllocationType
    amount: Decimal = Field(..., gt=0, description="Always positive; direction is in type")
    description: str = Field(default="", max_length=200)
    date: CalendarDate
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def signed_savings_delta(self) -> Decimal:
        """Effect on cumulative savings."""
        return self.amount if self.type == SavingsAllocationType.DEPOSIT else -self.amount

    @property
    def account_delta(self) -> Decimal:
        """Effect on the source account's balance (opposite of the savings effect)."""
        return -self.signed_savings_delta


# =============================================================================
# INPUT MODELS (what callers hand to the Ledger Store)
# =============================================================================
# Inputs accept non-finite Decimals so that LedgerValidator can report them
# as field errors instead of pydantic rejecting them first.

class AccountInput(BaseModel):
    """Fields needed to create an account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    type: AccountType = AccountType.BANK
    balance: Decimal = Field(default=ZERO, allow_inf_nan=True)
    last_four: Optional[str] = None


class AccountUpdate(BaseModel):
    """
    Partial account update.

    Every field is optional; only fields explicitly set by the caller
    (model_fields_set) are merged.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = None
    type: Optional[AccountType] = None
    balance: Optional[Decimal] = Field(default=None, allow_inf_nan=True)
    last_four: Optional[str] = None
    is_active: Optional[bool] = None
    verified: Optional[bool] = None


class TransactionInput(BaseModel):
    """Fields needed to record a transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = ""
    amount: Decimal = Field(..., allow_inf_nan=True)
    category: TransactionCategory = TransactionCategory.OTHER
    account_id: str
    date: Optional[CalendarDate] = None
    notes: Optional[str] = None


class TransactionUpdate(BaseModel):
    """Partial transaction update (only explicitly set fields merge)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, allow_inf_nan=True)
    category: Optional[TransactionCategory] = None
    account_id: Optional[str] = None
    date: Optional[CalendarDate] = None
    notes: Optional[str] = None


class SavingsAllocationInput(BaseModel):
    """Fields needed to allocate money to or from savings."""
    model_config = ConfigDict(str_strip_whitespace=True)

    type: SavingsAllocationType
    amount: Decimal = Field(..., allow_inf_nan=True)
    from_account_id: str
    description: str = ""
    date: Optional[CalendarDate] = None


# =============================================================================
# DERIVED VIEWS
# =============================================================================

class Totals(BaseModel):
    """
    Aggregate totals for one user, recomputed from scratch on every call.

    savings is reported as-is, even when negative. Use savings_overdrawn
    to surface that state rather than clamping.
    """

    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    savings: Decimal = ZERO
    is_available: bool = Field(
        default=True,
        description="False when the ledger could not be read ('data unavailable')"
    )

    @property
    def savings_overdrawn(self) -> bool:
        return self.savings < 0

    @property
    def net_flow(self) -> Decimal:
        return self.total_income - self.total_expenses

    @classmethod
    def unavailable(cls) -> "Totals":
        return cls(is_available=False)


class ReconciliationReport(BaseModel):
    """Stored vs. replayed balance for one account."""

    account_id: str
    stored: Decimal
    expected: Decimal

    @property
    def drift(self) -> Decimal:
        return self.stored - self.expected

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0
