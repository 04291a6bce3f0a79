"""
Balance Reconciler

Keeps every account's stored balance consistent with the ledger:

    balance == opening_balance
               + sum(transaction amounts on the account)
               - sum(savings deposits from the account)
               + sum(savings withdrawals into the account)

DESIGN DECISION: Totals are recomputed from scratch on every call.
There is no running cache to invalidate, so totals can never drift from
the transactions they summarize.

Read paths (totals, spending) never raise; they degrade to "data
unavailable" and log a warning. Write paths (apply, rebuild) propagate
errors so the caller knows the balance was not changed.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from budgee.audit import AuditLogger
from budgee.exceptions import NotFoundError
from budgee.models.ledger import ZERO, Account, ReconciliationReport, Totals
from budgee.models.limits import OVERALL_LIMIT
from budgee.services.ledger.store import LedgerStore
from budgee.services.storage import StorageError

logger = structlog.get_logger(__name__)


class BalanceReconciler:
    """Applies balance deltas and derives totals from the Ledger Store."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger

    def attach(self, store: LedgerStore) -> None:
        self._store = store

    @property
    def is_ready(self) -> bool:
        return self._store is not None

    def _require_store(self) -> LedgerStore:
        if self._store is None:
            raise StorageError("No ledger store attached")
        return self._store

    # ------------------------------------------------------------------
    # Balance updates
    # ------------------------------------------------------------------

    def apply_transaction_delta(self, user_id: str, account_id: str, amount: Decimal) -> Account:
        """
        Add amount to the account's stored balance.

        Call exactly once per committed ledger change:
        - add:        +amount
        - remove:     -amount (of the original transaction)
        - update:     new - old, or reverse on the old account and apply on the new one
        - allocation: SavingsAllocation.account_delta

        Raises:
            NotFoundError: If the account does not belong to user_id
        """
        store = self._require_store()
        account = store.get_account(user_id, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id!r} not found for user {user_id!r}")

        updated = store.write_balance(user_id, account_id, account.balance + amount)
        if self._audit:
            self._audit.log_balance_adjusted(
                user_id=user_id,
                account_id=account_id,
                delta=str(amount),
                new_balance=str(updated.balance),
            )
        return updated

    # ------------------------------------------------------------------
    # Derived totals
    # ------------------------------------------------------------------

    def calculate_totals(self, user_id: str) -> Totals:
        """
        Income, expenses and savings for the user.

        Returns Totals.unavailable() instead of raising when the ledger
        cannot be read.
        """
        if self._store is None:
            logger.warning("totals_unavailable", user_id=user_id, reason="no_store")
            return Totals.unavailable()

        try:
            transactions = self._store.get_transactions(user_id)
            allocations = self._store.get_savings_allocations(user_id)
        except StorageError as e:
            logger.warning("totals_unavailable", user_id=user_id, error=str(e))
            return Totals.unavailable()

        income = sum((t.amount for t in transactions if t.amount > 0), ZERO)
        expenses = sum((t.amount for t in transactions if t.amount < 0), ZERO)
        savings = sum((a.signed_savings_delta for a in allocations), ZERO)

        return Totals(
            total_income=income,
            total_expenses=abs(expenses),
            savings=savings,
        )

    def spending_for(
        self,
        user_id: str,
        category: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Decimal:
        """
        Absolute sum of expenses in [start, end], optionally for one category.

        category None or "overall" means every category.

        Raises:
            StorageError: If the ledger cannot be read
        """
        store = self._require_store()
        total = ZERO
        for transaction in store.get_transactions(user_id):
            if transaction.amount >= 0:
                continue
            if category not in (None, OVERALL_LIMIT) and transaction.category.value != category:
                continue
            if start is not None and transaction.date < start:
                continue
            if end is not None and transaction.date > end:
                continue
            total += transaction.amount
        return abs(total)

    def category_totals(self, user_id: str) -> dict[str, Decimal]:
        """Signed sum of amounts per category; empty when the ledger is unreadable."""
        if self._store is None:
            return {}
        try:
            transactions = self._store.get_transactions(user_id)
        except StorageError as e:
            logger.warning("category_totals_unavailable", user_id=user_id, error=str(e))
            return {}

        totals: dict[str, Decimal] = {}
        for transaction in transactions:
            key = transaction.category.value
            totals[key] = totals.get(key, ZERO) + transaction.amount
        return totals

    # ------------------------------------------------------------------
    # Verification and repair
    # ------------------------------------------------------------------

    def expected_balance(self, user_id: str, account_id: str) -> Decimal:
        """
        Replay the account from its opening balance.

        Raises:
            NotFoundError: If the account does not belong to user_id
        """
        store = self._require_store()
        account = store.get_account(user_id, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id!r} not found for user {user_id!r}")

        expected = account.opening_balance
        for transaction in store.get_transactions_by_account(user_id, account_id):
            expected += transaction.amount
        for allocation in store.get_savings_allocations(user_id):
            if allocation.from_account_id == account_id:
                expected += allocation.account_delta
        return expected

    def verify_account(self, user_id: str, account_id: str) -> ReconciliationReport:
        store = self._require_store()
        account = store.get_account(user_id, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id!r} not found for user {user_id!r}")
        return ReconciliationReport(
            account_id=account_id,
            stored=account.balance,
            expected=self.expected_balance(user_id, account_id),
        )

    def rebuild_balance(self, user_id: str, account_id: str) -> ReconciliationReport:
        """
        Overwrite the stored balance with the replayed one if they differ.

        Returns the report as it was BEFORE the repair.
        """
        report = self.verify_account(user_id, account_id)
        if report.is_consistent:
            return report

        logger.warning(
            "balance_drift_detected",
            user_id=user_id,
            account_id=account_id,
            stored=str(report.stored),
            expected=str(report.expected),
        )
        self._require_store().write_balance(user_id, account_id, report.expected)
        if self._audit:
            self._audit.log_balance_rebuilt(
                user_id=user_id,
                account_id=account_id,
                stored=str(report.stored),
                expected=str(report.expected),
            )
        return report
