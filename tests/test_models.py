"""
Tests for Budgee Core

Test strategy:
1. Unit tests for individual components (models, validators, PIN utilities)
2. Integration tests through FinanceSession (in-memory substrate)
3. No real API calls in tests (the assistant backend is faked)
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from budgee.exceptions import ValidationError
from budgee.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from budgee.models.ledger import (
    Account,
    AccountType,
    AccountUpdate,
    ReconciliationReport,
    SavingsAllocation,
    SavingsAllocationType,
    Totals,
    Transaction,
    TransactionCategory,
)
from budgee.models.limits import (
    LimitStatus,
    SpendingLimit,
    SpendingLimitState,
    SpendingLimitStatusResponse,
)
from budgee.models.security import PinRecord
from budgee.models.validation import ValidationIssue, ValidationResult

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestLedgerModels:
    """Tests for account, transaction and savings models."""

    def test_account_defaults(self):
        """Test a new Account is active, unverified and has a prefixed id."""
        account = Account(user_id="u1", name="Wallet", type=AccountType.CASH)
        assert account.id.startswith("acc_")
        assert account.is_active is True
        assert account.verified is False
        assert account.balance == Decimal("0")

    def test_account_strips_whitespace(self):
        """Test that whitespace is stripped from account names."""
        account = Account(user_id="u1", name="  Wallet  ", type=AccountType.CASH)
        assert account.name == "Wallet"

    def test_account_type_values(self):
        """Test account types use their display names as values."""
        assert AccountType("E-Wallet") == AccountType.E_WALLET
        with pytest.raises(ValueError):
            AccountType("Savings")

    def test_transaction_sign_decides_direction(self):
        """Test income/expense comes from the sign, never the category."""
        refund = Transaction(
            user_id="u1",
            account_id="acc_1",
            description="Salary reversal",
            category=TransactionCategory.INCOME,
            amount=Decimal("-50"),
            date=date(2026, 3, 1),
        )
        assert refund.is_expense
        assert not refund.is_income

    def test_transaction_ids_are_unique(self):
        """Test every transaction gets a fresh id."""
        kwargs = dict(
            user_id="u1",
            account_id="acc_1",
            description="Coffee",
            category=TransactionCategory.FOOD,
            amount=Decimal("-3.50"),
            date=date(2026, 3, 1),
        )
        assert Transaction(**kwargs).id != Transaction(**kwargs).id

    def test_savings_deposit_lowers_account(self):
        """Test a deposit raises savings and lowers the source account."""
        deposit = SavingsAllocation(
            user_id="u1",
            from_account_id="acc_1",
            type=SavingsAllocationType.DEPOSIT,
            amount=Decimal("200"),
            date=date(2026, 3, 1),
        )
        assert deposit.signed_savings_delta == Decimal("200")
        assert deposit.account_delta == Decimal("-200")

    def test_savings_withdrawal_raises_account(self):
        """Test a withdrawal lowers savings and raises the account."""
        withdrawal = SavingsAllocation(
            user_id="u1",
            from_account_id="acc_1",
            type=SavingsAllocationType.WITHDRAWAL,
            amount=Decimal("75"),
            date=date(2026, 3, 1),
        )
        assert withdrawal.signed_savings_delta == Decimal("-75")
        assert withdrawal.account_delta == Decimal("75")

    def test_savings_amount_must_be_positive(self):
        """Test stored allocations reject zero amounts."""
        with pytest.raises(ValueError):
            SavingsAllocation(
                user_id="u1",
                from_account_id="acc_1",
                type=SavingsAllocationType.DEPOSIT,
                amount=Decimal("0"),
                date=date(2026, 3, 1),
            )

    def test_account_update_tracks_set_fields(self):
        """Test partial updates only report explicitly set fields."""
        update = AccountUpdate(name="Renamed")
        assert update.model_fields_set == {"name"}

    def test_account_round_trips_through_json(self):
        """Test Decimal money survives JSON serialisation exactly."""
        account = Account(user_id="u1", name="Bank", type=AccountType.BANK, balance=Decimal("10.10"))
        restored = Account.model_validate(account.model_dump(mode="json"))
        assert restored.balance == Decimal("10.10")
        assert restored.created_at == account.created_at


class TestDerivedViews:
    """Tests for Totals and ReconciliationReport."""

    def test_totals_savings_not_clamped(self):
        """Test negative savings are kept and flagged."""
        totals = Totals(savings=Decimal("-25"))
        assert totals.savings == Decimal("-25")
        assert totals.savings_overdrawn

    def test_totals_unavailable(self):
        """Test the data-unavailable sentinel is zeroed."""
        totals = Totals.unavailable()
        assert totals.is_available is False
        assert totals.total_income == 0
        assert totals.total_expenses == 0

    def test_totals_net_flow(self):
        """Test net flow is income minus expenses."""
        totals = Totals(total_income=Decimal("500"), total_expenses=Decimal("120"))
        assert totals.net_flow == Decimal("380")

    def test_reconciliation_report_drift(self):
        """Test drift is stored minus expected."""
        report = ReconciliationReport(account_id="acc_1", stored=Decimal("110"), expected=Decimal("100"))
        assert report.drift == Decimal("10")
        assert not report.is_consistent


class TestLimitModels:
    """Tests for spending limit models and read model."""

    def test_zero_amount_disables_limit(self):
        """Test amount 0 means disabled."""
        assert not SpendingLimit(type="overall").is_enabled
        assert SpendingLimit(type="Food", amount=Decimal("10")).is_enabled

    def test_negative_limit_rejected(self):
        """Test negative limit amounts are rejected."""
        with pytest.raises(ValueError):
            SpendingLimit(type="Food", amount=Decimal("-1"))

    def test_status_severity_ordering(self):
        """Test severities order OK < NEAR_LIMIT < EXCEEDED."""
        assert LimitStatus.OK.severity < LimitStatus.NEAR_LIMIT.severity < LimitStatus.EXCEEDED.severity

    def test_status_response_flags(self):
        """Test has_exceeded/has_warning/overall_status are derived and serialised."""
        response = SpendingLimitStatusResponse(limits=[
            SpendingLimitState(type="Food", amount=Decimal("100"), status=LimitStatus.NEAR_LIMIT),
            SpendingLimitState(type="overall", amount=Decimal("500"), status=LimitStatus.EXCEEDED),
        ])
        assert response.has_exceeded
        assert response.has_warning
        assert response.overall_status == LimitStatus.EXCEEDED

        dumped = response.model_dump()
        assert dumped["has_exceeded"] is True
        assert dumped["overall_status"] == LimitStatus.EXCEEDED

    def test_status_response_lookup(self):
        """Test get() finds a limit by type."""
        response = SpendingLimitStatusResponse(limits=[
            SpendingLimitState(type="Food", amount=Decimal("100")),
        ])
        assert response.get("Food").amount == Decimal("100")
        assert response.get("Housing") is None


class TestSecurityModels:
    """Tests for PinRecord."""

    def test_pin_record_requires_full_digest(self):
        """Test pin_hash must be a 64-character digest."""
        with pytest.raises(ValueError):
            PinRecord(user_id="u1", pin_hash="abc")

    def test_pin_record_lock_window(self):
        """Test is_locked honours locked_until."""
        record = PinRecord(user_id="u1", pin_hash="a" * 64, locked_until=NOW + timedelta(minutes=15))
        assert record.is_locked(NOW)
        assert not record.is_locked(NOW + timedelta(minutes=15))


class TestValidationModels:
    """Tests for validation-related models."""

    def test_validation_issue_creation(self):
        """Test ValidationIssue model creation."""
        issue = ValidationIssue(
            field="amount",
            issue_type="not_finite",
            message="Amount must be a finite number",
            severity="error",
        )
        assert issue.field == "amount"
        assert issue.severity == "error"

    def test_validation_issue_severity_pattern(self):
        """Test that severity must match pattern."""
        with pytest.raises(ValueError):
            ValidationIssue(
                field="test",
                issue_type="test",
                message="Test",
                severity="invalid",
            )

    def test_validation_result_properties(self):
        """Test ValidationResult computed properties."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=False,
            issues=[
                ValidationIssue(field="a", issue_type="x", message="Error 1", severity="error"),
                ValidationIssue(field="b", issue_type="y", message="Warning 1", severity="warning"),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1
        assert result.warnings == ["Warning 1"]
        assert not result.is_valid

    def test_validation_error_exposes_fields(self):
        """Test our ValidationError lists the failing fields."""
        error = ValidationError("bad", issues=[
            ValidationIssue(field="name", issue_type="missing", message="m", severity="error"),
        ])
        assert error.fields == ["name"]


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            description="Transaction added",
        )
        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            description="Account created",
            details={"name": "Bank"},
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "account_created"
        assert log_dict["details"] == {"name": "Bank"}

    def test_audit_builder_transaction_added(self):
        """Test AuditEventBuilder for transactions."""
        event = AuditEventBuilder.transaction_added(
            user_id="u1",
            transaction_id="txn_1",
            account_id="acc_1",
            amount="-20.00",
            category="Food",
        )
        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.entity_id == "txn_1"
        assert event.is_user_action

    def test_audit_builder_pin_locked_out(self):
        """Test lockout events are warnings and carry no PIN material."""
        event = AuditEventBuilder.pin_locked_out("u1", NOW)
        assert event.severity == AuditSeverity.WARNING
        assert "pin_hash" not in event.details

    def test_audit_record_is_json_safe(self):
        """Test to_record() produces JSON-safe values."""
        event = AuditEventBuilder.system_error(
            error_type="reconciliation_failed",
            error_message="boom",
        )
        record = event.to_record()
        assert isinstance(record["event_id"], str)
        assert isinstance(record["timestamp"], str)
