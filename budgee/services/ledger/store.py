"""
Ledger Store

Durable CRUD for accounts, transactions and savings allocations, scoped
by user_id. This is the ONLY place storage-layer invariants are enforced.

DESIGN DECISION: The Ledger Store never changes an account balance as a
side effect of adding or removing a transaction. The caller applies the
delta through BalanceReconciler.apply_transaction_delta, so every balance
change is a separate, auditable and replayable step.

Records for a user live under three keys in the key-value substrate:
    budgee_accounts_<user_id>
    budgee_transactions_<user_id>
    budgee_savings_<user_id>

Every read filters by user_id before returning anything; a record whose
user_id does not match its partition is dropped and logged.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from budgee.audit import AuditLogger
from budgee.exceptions import NotFoundError, ValidationError
from budgee.models.ledger import (
    ZERO,
    Account,
    AccountInput,
    AccountType,
    AccountUpdate,
    SavingsAllocation,
    SavingsAllocationInput,
    Transaction,
    TransactionCategory,
    TransactionInput,
    TransactionUpdate,
    utc_now,
)
from budgee.models.validation import ValidationIssue, ValidationResult
from budgee.services.storage import CorruptDataError, KeyValueStoreInterface
from budgee.validation import LedgerValidator

ACCOUNTS_KEY = "budgee_accounts"
TRANSACTIONS_KEY = "budgee_transactions"
SAVINGS_KEY = "budgee_savings"

DEFAULT_CASH_ACCOUNT = AccountInput(
    name="Cash",
    type=AccountType.CASH,
    balance=ZERO,
    last_four="----",
)

# Fields that cannot be cleared to None through a partial update
_REQUIRED_ACCOUNT_FIELDS = {"name", "type", "balance", "is_active", "verified"}
_REQUIRED_TRANSACTION_FIELDS = {"description", "amount", "category", "account_id", "date"}

M = TypeVar("M", bound=BaseModel)

logger = structlog.get_logger(__name__)


def _pydantic_issues(error: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ())) or "input"
        issues.append(ValidationIssue(
            field=field,
            issue_type=detail.get("type", "invalid"),
            message=f"{field}: {detail.get('msg', 'invalid value')}",
            severity="error",
        ))
    return issues


def _coerce(model_cls: type[M], data: Union[M, dict[str, Any]]) -> M:
    """Accept a model instance or a plain dict; bad shapes become ValidationError."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        issues = _pydantic_issues(e)
        raise ValidationError(
            "; ".join(issue.message for issue in issues),
            issues=issues,
        ) from e


def _newest_first(records: list[M]) -> list[M]:
    """Sort by date desc, then created_at desc, then later insertion first."""
    indexed = sorted(
        enumerate(records),
        key=lambda pair: (pair[1].date, pair[1].created_at, pair[0]),
        reverse=True,
    )
    return [record for _, record in indexed]


class LedgerStore:
    """
    Per-user ledger persistence.

    All reads are O(n) scans over the user's partition; ledgers are one
    user's history on one device, so this is deliberate.
    """

    def __init__(
        self,
        storage: KeyValueStoreInterface,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger
        self._clock = clock

    # ------------------------------------------------------------------
    # Partition helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(base: str, user_id: str) -> str:
        return f"{base}_{user_id}"

    @staticmethod
    def _check_user(user_id: str) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError(
                "user_id is required",
                issues=[ValidationIssue(
                    field="user_id",
                    issue_type="missing",
                    message="user_id is required",
                    severity="error",
                )],
            )

    def _load(self, base: str, user_id: str, model_cls: type[M]) -> list[M]:
        self._check_user(user_id)
        raw = self._storage.get(self._key(base, user_id))
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CorruptDataError(f"{base} for user {user_id!r} is not a list")

        records = []
        for item in raw:
            try:
                record = model_cls.model_validate(item)
            except PydanticValidationError as e:
                raise CorruptDataError(f"Corrupt {base} record for user {user_id!r}: {e}") from e
            if record.user_id != user_id:
                logger.warning(
                    "foreign_record_dropped",
                    partition=base,
                    user_id=user_id,
                    record_id=record.id,
                )
                continue
            records.append(record)
        return records

    def _save(self, base: str, user_id: str, records: list[BaseModel]) -> None:
        self._storage.set(
            self._key(base, user_id),
            [record.model_dump(mode="json") for record in records],
        )

    def _raise_if_invalid(self, result: ValidationResult, action: str, user_id: str) -> None:
        if result.has_errors:
            raise ValidationError(LedgerValidator.summarize(result), issues=result.errors)
        for warning in result.warnings:
            logger.warning("ledger_input_warning", action=action, user_id=user_id, warning=warning)

    def _today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_accounts(self, user_id: str, include_inactive: bool = True) -> list[Account]:
        """Accounts in insertion order."""
        accounts = self._load(ACCOUNTS_KEY, user_id, Account)
        if include_inactive:
            return accounts
        return [account for account in accounts if account.is_active]

    def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        for account in self.get_accounts(user_id):
            if account.id == account_id:
                return account
        return None

    def add_account(self, user_id: str, data: Union[AccountInput, dict]) -> Account:
        """
        Create an account.

        Raises:
            ValidationError: If name is empty or balance is not finite
        """
        self._check_user(user_id)
        account_input = _coerce(AccountInput, data)
        self._raise_if_invalid(
            self._validator.validate_account(account_input), "add_account", user_id
        )

        now = self._clock()
        account = Account(
            user_id=user_id,
            name=account_input.name,
            type=account_input.type,
            balance=account_input.balance,
            opening_balance=account_input.balance,
            last_four=account_input.last_four,
            is_active=True,
            verified=False,
            created_at=now,
            updated_at=now,
        )

        accounts = self.get_accounts(user_id)
        accounts.append(account)
        self._save(ACCOUNTS_KEY, user_id, accounts)

        if self._audit:
            self._audit.log_account_created(
                user_id=user_id,
                account_id=account.id,
                name=account.name,
                account_type=account.type.value,
                balance=str(account.balance),
            )
        return account

    def update_account(
        self,
        user_id: str,
        account_id: str,
        data: Union[AccountUpdate, dict],
    ) -> Account:
        """
        Merge the explicitly set fields into an account.

        A corrective balance reset shifts opening_balance by the same
        delta, so the reconciliation invariant keeps holding.

        Raises:
            NotFoundError: If the account does not belong to user_id
            ValidationError: If a set field is invalid
        """
        update = _coerce(AccountUpdate, data)
        self._raise_if_invalid(
            self._validator.validate_account_update(update), "update_account", user_id
        )

        accounts = self.get_accounts(user_id)
        index = next((i for i, a in enumerate(accounts) if a.id == account_id), None)
        if index is None:
            raise NotFoundError(f"Account {account_id!r} not found for user {user_id!r}")

        current = accounts[index]
        changes = {
            field: getattr(update, field)
            for field in update.model_fields_set
            if not (field in _REQUIRED_ACCOUNT_FIELDS and getattr(update, field) is None)
        }
        if "balance" in changes:
            delta = changes["balance"] - current.balance
            changes["opening_balance"] = current.opening_balance + delta
        changes["updated_at"] = self._clock()

        updated = Account.model_validate({**current.model_dump(), **changes})
        accounts[index] = updated
        self._save(ACCOUNTS_KEY, user_id, accounts)

        if self._audit:
            self._audit.log_account_updated(
                user_id=user_id,
                account_id=account_id,
                changed_fields=sorted(f for f in changes if f != "updated_at"),
            )
        return updated

    def deactivate_account(self, user_id: str, account_id: str) -> bool:
        """Soft delete. Returns False if the account is absent."""
        accounts = self.get_accounts(user_id)
        for index, account in enumerate(accounts):
            if account.id == account_id:
                accounts[index] = account.model_copy(
                    update={"is_active": False, "updated_at": self._clock()}
                )
                self._save(ACCOUNTS_KEY, user_id, accounts)
                if self._audit:
                    self._audit.log_account_deactivated(user_id, account_id)
                return True
        return False

    def write_balance(self, user_id: str, account_id: str, balance: Decimal) -> Account:
        """
        Persist a new stored balance.

        Reserved for BalanceReconciler. Nothing else may call this.

        Raises:
            NotFoundError: If the account does not belong to user_id
        """
        if not balance.is_finite():
            raise ValidationError("Balance must be a finite number")
        accounts = self.get_accounts(user_id)
        for index, account in enumerate(accounts):
            if account.id == account_id:
                accounts[index] = account.model_copy(
                    update={"balance": balance, "updated_at": self._clock()}
                )
                self._save(ACCOUNTS_KEY, user_id, accounts)
                return accounts[index]
        raise NotFoundError(f"Account {account_id!r} not found for user {user_id!r}")

    def ensure_cash_account(self, user_id: str) -> Account:
        """Return the user's active Cash account, creating it if missing."""
        for account in self.get_accounts(user_id, include_inactive=False):
            if account.type == AccountType.CASH:
                return account
        return self.add_account(user_id, DEFAULT_CASH_ACCOUNT)

    def seed_user_data(self, user_id: str) -> bool:
        """
        Give a brand-new user their default Cash account.

        Returns False (and does nothing) if the user already has data.
        """
        if self.get_accounts(user_id) or self.get_transactions(user_id):
            return False
        self.add_account(user_id, DEFAULT_CASH_ACCOUNT)
        return True

    def clear_user_data(self, user_id: str) -> None:
        """Remove the user's whole partition (used on logout / account removal)."""
        self._check_user(user_id)
        for base in (ACCOUNTS_KEY, TRANSACTIONS_KEY, SAVINGS_KEY):
            self._storage.delete(self._key(base, user_id))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _resolve_active_account(self, user_id: str, account_id: Optional[str]) -> Account:
        account = self.get_account(user_id, account_id) if account_id else None
        if account is None or not account.is_active:
            raise ValidationError(
                f"Account {account_id!r} is not an active account of this user",
                issues=[ValidationIssue(
                    field="account_id",
                    issue_type="unknown_account",
                    message="Please choose one of your active accounts",
                    severity="error",
                )],
            )
        return account

    def get_transactions(self, user_id: str) -> list[Transaction]:
        """Most recent first (date desc, then created_at desc)."""
        return _newest_first(self._load(TRANSACTIONS_KEY, user_id, Transaction))

    def get_transaction(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        for transaction in self._load(TRANSACTIONS_KEY, user_id, Transaction):
            if transaction.id == transaction_id:
                return transaction
        return None

    def add_transaction(self, user_id: str, data: Union[TransactionInput, dict]) -> Transaction:
        """
        Record a transaction. Does NOT touch the account balance.

        Raises:
            ValidationError: If amount is not finite or account_id is not
                an active account of user_id
        """
        self._check_user(user_id)
        txn_input = _coerce(TransactionInput, data)
        self._raise_if_invalid(
            self._validator.validate_transaction(txn_input), "add_transaction", user_id
        )
        self._resolve_active_account(user_id, txn_input.account_id)

        transaction = Transaction(
            user_id=user_id,
            account_id=txn_input.account_id,
            description=txn_input.description,
            notes=txn_input.notes,
            category=txn_input.category,
            amount=txn_input.amount,
            date=txn_input.date or self._today(),
            created_at=self._clock(),
        )

        transactions = self._load(TRANSACTIONS_KEY, user_id, Transaction)
        transactions.append(transaction)
        self._save(TRANSACTIONS_KEY, user_id, transactions)

        if self._audit:
            self._audit.log_transaction_added(
                user_id=user_id,
                transaction_id=transaction.id,
                account_id=transaction.account_id,
                amount=str(transaction.amount),
                category=transaction.category.value,
            )
        return transaction

    def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        data: Union[TransactionUpdate, dict],
    ) -> Transaction:
        """
        Merge explicitly set fields into a transaction. Does NOT touch balances.

        Raises:
            NotFoundError: If the transaction does not belong to user_id
            ValidationError: If a set field is invalid or the new account
                is not active
        """
        update = _coerce(TransactionUpdate, data)
        self._raise_if_invalid(
            self._validator.validate_transaction_update(update), "update_transaction", user_id
        )

        transactions = self._load(TRANSACTIONS_KEY, user_id, Transaction)
        index = next((i for i, t in enumerate(transactions) if t.id == transaction_id), None)
        if index is None:
            raise NotFoundError(f"Transaction {transaction_id!r} not found for user {user_id!r}")

        current = transactions[index]
        changes = {
            field: getattr(update, field)
            for field in update.model_fields_set
            if not (field in _REQUIRED_TRANSACTION_FIELDS and getattr(update, field) is None)
        }
        if "account_id" in changes and changes["account_id"] != current.account_id:
            self._resolve_active_account(user_id, changes["account_id"])

        updated = Transaction.model_validate({**current.model_dump(), **changes})
        transactions[index] = updated
        self._save(TRANSACTIONS_KEY, user_id, transactions)

        if self._audit:
            self._audit.log_transaction_updated(
                user_id=user_id,
                transaction_id=transaction_id,
                old_amount=str(current.amount),
                new_amount=str(updated.amount),
            )
        return updated

    def remove_transaction(self, user_id: str, transaction_id: str) -> bool:
        """
        Hard-delete a transaction. Does NOT reverse the account balance.

        Returns:
            True if deleted, False if it was not found / not owned
        """
        transactions = self._load(TRANSACTIONS_KEY, user_id, Transaction)
        remaining = [t for t in transactions if t.id != transaction_id]
        if len(remaining) == len(transactions):
            return False

        removed = next(t for t in transactions if t.id == transaction_id)
        self._save(TRANSACTIONS_KEY, user_id, remaining)

        if self._audit:
            self._audit.log_transaction_removed(
                user_id=user_id,
                transaction_id=transaction_id,
                amount=str(removed.amount),
            )
        return True

    def get_transactions_by_date_range(
        self,
        user_id: str,
        start: date,
        end: date,
    ) -> list[Transaction]:
        return [t for t in self.get_transactions(user_id) if start <= t.date <= end]

    def get_transactions_by_category(
        self,
        user_id: str,
        category: TransactionCategory,
    ) -> list[Transaction]:
        return [t for t in self.get_transactions(user_id) if t.category == category]

    def get_transactions_by_account(self, user_id: str, account_id: str) -> list[Transaction]:
        return [t for t in self.get_transactions(user_id) if t.account_id == account_id]

    # ------------------------------------------------------------------
    # Savings allocations
    # ------------------------------------------------------------------

    def get_savings_allocations(self, user_id: str) -> list[SavingsAllocation]:
        """Most recent first."""
        return _newest_first(self._load(SAVINGS_KEY, user_id, SavingsAllocation))

    def add_savings_allocation(
        self,
        user_id: str,
        data: Union[SavingsAllocationInput, dict],
    ) -> SavingsAllocation:
        """
        Record a savings deposit/withdrawal. Does NOT touch the account balance.

        Raises:
            ValidationError: If amount <= 0 or from_account_id is unknown
        """
        self._check_user(user_id)
        allocation_input = _coerce(SavingsAllocationInput, data)
        self._raise_if_invalid(
            self._validator.validate_savings_allocation(allocation_input),
            "add_savings_allocation",
            user_id,
        )
        if self.get_account(user_id, allocation_input.from_account_id) is None:
            raise ValidationError(
                f"Account {allocation_input.from_account_id!r} is unknown",
                issues=[ValidationIssue(
                    field="from_account_id",
                    issue_type="unknown_account",
                    message="Please choose one of your accounts",
                    severity="error",
                )],
            )

        allocation = SavingsAllocation(
            user_id=user_id,
            from_account_id=allocation_input.from_account_id,
            type=allocation_input.type,
            amount=allocation_input.amount,
            description=allocation_input.description,
            date=allocation_input.date or self._today(),
            created_at=self._clock(),
        )

        allocations = self._load(SAVINGS_KEY, user_id, SavingsAllocation)
        allocations.append(allocation)
        self._save(SAVINGS_KEY, user_id, allocations)

        if self._audit:
            self._audit.log_savings_allocated(
                user_id=user_id,
                allocation_id=allocation.id,
                allocation_type=allocation.type.value,
                amount=str(allocation.amount),
                account_id=allocation.from_account_id,
            )
        return allocation
