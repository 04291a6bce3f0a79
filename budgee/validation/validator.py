"""
Two-Stage Validation for Ledger Input

STAGE 1 - SCHEMA VALIDATION (errors, block the write):
- Required text present (account name, transaction description)
- Amounts are finite numbers
- Savings allocation amounts are strictly positive

STAGE 2 - SEMANTIC VALIDATION (warnings, never block):
- Dates too far in the future
- Absurdly large amounts

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the Ledger Store decides what to raise.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from budgee.config import LedgerSettings, get_settings
from budgee.models.ledger import (
    AccountInput,
    AccountUpdate,
    SavingsAllocationInput,
    TransactionInput,
    TransactionUpdate,
)
from budgee.models.validation import ValidationIssue, ValidationResult


def _is_finite(value: Optional[Decimal]) -> bool:
    return value is not None and value.is_finite()


class LedgerValidator:
    """
    Validates ledger input through a two-stage pipeline.

    Stage 2 only runs when stage 1 passes.
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_text(field: str, value: Optional[str], label: str) -> list[ValidationIssue]:
        if value is None or not value.strip():
            return [ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"{label} is required",
                severity="error",
            )]
        return []

    @staticmethod
    def _require_finite(field: str, value: Optional[Decimal], label: str) -> list[ValidationIssue]:
        if not _is_finite(value):
            return [ValidationIssue(
                field=field,
                issue_type="not_finite",
                message=f"{label} must be a finite number",
                severity="error",
                suggested_fix="Enter a plain number such as 1250.50",
            )]
        return []

    def _check_amount_size(self, field: str, value: Decimal) -> list[ValidationIssue]:
        ceiling = Decimal(str(self._settings.max_transaction_amount))
        if abs(value) > ceiling:
            return [ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"Amount ({value:,.2f}) seems unusually large",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            )]
        return []

    def _check_date(self, field: str, value: Optional[date]) -> list[ValidationIssue]:
        if value is None:
            return []
        tolerance = timedelta(days=self._settings.future_date_tolerance_days)
        if value > date.today() + tolerance:
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"Date ({value.isoformat()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            )]
        return []

    @staticmethod
    def _result(schema_issues: list[ValidationIssue], semantic_issues: list[ValidationIssue]) -> ValidationResult:
        schema_valid = not any(issue.severity == "error" for issue in schema_issues)
        semantic_valid = schema_valid and not any(
            issue.severity == "error" for issue in semantic_issues
        )
        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=schema_issues + semantic_issues,
        )

    # ------------------------------------------------------------------
    # Public validators
    # ------------------------------------------------------------------

    def validate_account(self, data: AccountInput) -> ValidationResult:
        schema = self._require_text("name", data.name, "Account name")
        schema += self._require_finite("balance", data.balance, "Balance")

        semantic = []
        if not any(issue.severity == "error" for issue in schema):
            semantic = self._check_amount_size("balance", data.balance)
        return self._result(schema, semantic)

    def validate_account_update(self, data: AccountUpdate) -> ValidationResult:
        schema = []
        if "name" in data.model_fields_set:
            schema += self._require_text("name", data.name, "Account name")
        if "balance" in data.model_fields_set:
            schema += self._require_finite("balance", data.balance, "Balance")
        return self._result(schema, [])

    def validate_transaction(self, data: TransactionInput) -> ValidationResult:
        schema = self._require_text("description", data.description, "Description")
        schema += self._require_finite("amount", data.amount, "Amount")
        schema += self._require_text("account_id", data.account_id, "Account")

        semantic = []
        if not any(issue.severity == "error" for issue in schema):
            semantic = self._check_amount_size("amount", data.amount)
            semantic += self._check_date("date", data.date)
        return self._result(schema, semantic)

    def validate_transaction_update(self, data: TransactionUpdate) -> ValidationResult:
        fields = data.model_fields_set
        schema = []
        if "description" in fields:
            schema += self._require_text("description", data.description, "Description")
        if "amount" in fields:
            schema += self._require_finite("amount", data.amount, "Amount")
        if "account_id" in fields:
            schema += self._require_text("account_id", data.account_id, "Account")
        if "category" in fields and data.category is None:
            schema.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category cannot be cleared",
                severity="error",
            ))

        semantic = []
        if not any(issue.severity == "error" for issue in schema):
            if "amount" in fields:
                semantic += self._check_amount_size("amount", data.amount)
            if "date" in fields:
                semantic += self._check_date("date", data.date)
        return self._result(schema, semantic)

    def validate_savings_allocation(self, data: SavingsAllocationInput) -> ValidationResult:
        schema = self._require_finite("amount", data.amount, "Amount")
        if not schema and data.amount <= 0:
            schema.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
                suggested_fix="Use a withdrawal instead of a negative deposit",
            ))
        schema += self._require_text("from_account_id", data.from_account_id, "Source account")

        semantic = []
        if not any(issue.severity == "error" for issue in schema):
            semantic = self._check_amount_size("amount", data.amount)
            semantic += self._check_date("date", data.date)
        return self._result(schema, semantic)

    @staticmethod
    def summarize(result: ValidationResult) -> str:
        """One-line message for a failed result, suitable for an exception."""
        if not result.has_errors:
            return "Valid"
        return "; ".join(issue.message for issue in result.errors)
