"""
Data Models Package

This package contains all Pydantic models used in Budgee Core.
All data flowing through the system must conform to these schemas.
"""

from budgee.models.ledger import (
    Account,
    AccountInput,
    AccountType,
    AccountUpdate,
    ReconciliationReport,
    SavingsAllocation,
    SavingsAllocationInput,
    SavingsAllocationType,
    Totals,
    Transaction,
    TransactionCategory,
    TransactionInput,
    TransactionUpdate,
)
from budgee.models.limits import (
    OVERALL_LIMIT,
    LimitPeriod,
    LimitStatus,
    SpendingAlert,
    SpendingLimit,
    SpendingLimitState,
    SpendingLimitStatusResponse,
)
from budgee.models.security import (
    AppLockState,
    PinFormatResult,
    PinRecord,
    PinStatus,
    PinStrengthResult,
)
from budgee.models.validation import ValidationIssue, ValidationResult
from budgee.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountInput",
    "AccountType",
    "AccountUpdate",
    "ReconciliationReport",
    "SavingsAllocation",
    "SavingsAllocationInput",
    "SavingsAllocationType",
    "Totals",
    "Transaction",
    "TransactionCategory",
    "TransactionInput",
    "TransactionUpdate",
    # Spending limit models
    "OVERALL_LIMIT",
    "LimitPeriod",
    "LimitStatus",
    "SpendingAlert",
    "SpendingLimit",
    "SpendingLimitState",
    "SpendingLimitStatusResponse",
    # Security models
    "AppLockState",
    "PinFormatResult",
    "PinRecord",
    "PinStatus",
    "PinStrengthResult",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
