"""
Session Orchestrator for Budgee Core

This module ties the components together for one signed-in user:
1. Ledger mutation  (Ledger Store)
2. Reconciliation   (Balance Reconciler)
3. Notification     (Change Notification Bus fires "data-update")

DESIGN DECISION: The session, not the store or the reconciler, publishes
"data-update". A mutation and its balance delta are applied as one unit,
and subscribers hear about it only once both are done, so a subscriber
that re-reads never sees a transaction whose balance effect is missing.

If applying a balance delta fails after the ledger write committed, the
session replays the affected accounts from the ledger (rebuild_balance).
Only if that also fails is the error raised; the drift is then visible
through verify_balances() and repaired on the next rebuild.

Everything here is owned by the session, including the bus. close() stops
the limit monitor and drops every subscriber, so nothing leaks across a
logout or user switch.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

import structlog

from budgee.audit import AuditLogger
from budgee.config import Settings, get_settings
from budgee.events import DATA_UPDATE, ChangeNotificationBus
from budgee.exceptions import BudgeeError, NotFoundError
from budgee.models.ledger import (
    Account,
    AccountInput,
    AccountUpdate,
    ReconciliationReport,
    SavingsAllocation,
    SavingsAllocationInput,
    Totals,
    Transaction,
    TransactionInput,
    TransactionUpdate,
    utc_now,
)
from budgee.models.limits import LimitPeriod, SpendingAlert, SpendingLimit, SpendingLimitStatusResponse
from budgee.services.ledger import BalanceReconciler, LedgerStore
from budgee.services.limits import SpendingLimitEvaluator, SpendingLimitMonitor, SpendingLimitStore
from budgee.services.security import AppLockController, PinSecurityModule
from budgee.services.storage import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    KeyValueStoreInterface,
    StorageError,
)
from budgee.validation import LedgerValidator

logger = structlog.get_logger(__name__)


class FinanceSession:
    """
    Facade over the Financial Data & Security Core for one user.

    All ledger mutations go through here so that reconciliation and
    notification always follow them.
    """

    def __init__(
        self,
        user_id: str,
        storage: KeyValueStoreInterface,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = settings or get_settings()
        self.user_id = user_id
        self.bus = ChangeNotificationBus()
        self.audit_logger = audit_logger

        self.ledger = LedgerStore(
            storage,
            validator=LedgerValidator(settings.ledger),
            audit_logger=audit_logger,
            clock=clock,
        )
        self.reconciler = BalanceReconciler(self.ledger, audit_logger=audit_logger)
        self.pins = PinSecurityModule(
            storage,
            settings=settings.security,
            audit_logger=audit_logger,
            clock=clock,
        )
        self.app_lock = AppLockController(self.pins, clock=clock, audit_logger=audit_logger)
        self.limit_store = SpendingLimitStore(storage, clock=clock)
        self.limits = SpendingLimitEvaluator(
            self.reconciler,
            self.limit_store,
            settings=settings.limits,
            clock=clock,
            audit_logger=audit_logger,
        )

        self._limit_settings = settings.limits
        self._monitor: Optional[SpendingLimitMonitor] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("FinanceSession is closed")

    def _changed(self) -> None:
        self.bus.publish(DATA_UPDATE)

    def close(self) -> None:
        """Stop background work and drop every subscriber."""
        if self._closed:
            return
        self.stop_limit_monitor()
        self.app_lock.reset(self.user_id)
        self.limits.tracker.reset(self.user_id)
        self.bus.close()
        self._closed = True
        logger.info("session_closed", user_id=self.user_id)

    def __enter__(self) -> "FinanceSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def seed(self) -> bool:
        """Give a new user their Cash account and disabled default limits."""
        self._ensure_open()
        seeded = self.ledger.seed_user_data(self.user_id)
        self.limit_store.initialize_default_limits(self.user_id)
        if seeded:
            self._changed()
        return seeded

    def clear_user_data(self) -> None:
        """Remove the user's ledger and limits (logout / account removal)."""
        self._ensure_open()
        self.ledger.clear_user_data(self.user_id)
        self.limit_store.clear(self.user_id)
        self.limits.tracker.reset(self.user_id)
        self._changed()

    # ------------------------------------------------------------------
    # Reconciliation unit
    # ------------------------------------------------------------------

    def _apply_deltas(self, deltas: list[tuple[str, Decimal]]) -> None:
        """Apply balance deltas; on failure replay the affected accounts."""
        try:
            for account_id, delta in deltas:
                if delta:
                    self.reconciler.apply_transaction_delta(self.user_id, account_id, delta)
        except (BudgeeError, StorageError) as e:
            logger.error("balance_delta_failed", user_id=self.user_id, error=str(e))
            try:
                for account_id in dict.fromkeys(account_id for account_id, _ in deltas):
                    self.reconciler.rebuild_balance(self.user_id, account_id)
            except (BudgeeError, StorageError):
                if self.audit_logger:
                    self.audit_logger.log_error(
                        error_type="reconciliation_failed",
                        error_message=str(e),
                        details={"accounts": [account_id for account_id, _ in deltas]},
                        user_id=self.user_id,
                    )
                raise e

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_accounts(self, include_inactive: bool = True) -> list[Account]:
        return self.ledger.get_accounts(self.user_id, include_inactive=include_inactive)

    def add_account(self, data: Union[AccountInput, dict]) -> Account:
        self._ensure_open()
        account = self.ledger.add_account(self.user_id, data)
        self._changed()
        return account

    def update_account(self, account_id: str, data: Union[AccountUpdate, dict]) -> Account:
        self._ensure_open()
        account = self.ledger.update_account(self.user_id, account_id, data)
        self._changed()
        return account

    def deactivate_account(self, account_id: str) -> bool:
        self._ensure_open()
        removed = self.ledger.deactivate_account(self.user_id, account_id)
        if removed:
            self._changed()
        return removed

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def get_transactions(self) -> list[Transaction]:
        return self.ledger.get_transactions(self.user_id)

    def add_transaction(self, data: Union[TransactionInput, dict]) -> Transaction:
        """Record a transaction and move its account balance by amount."""
        self._ensure_open()
        transaction = self.ledger.add_transaction(self.user_id, data)
        self._apply_deltas([(transaction.account_id, transaction.amount)])
        self._changed()
        return transaction

    def update_transaction(
        self,
        transaction_id: str,
        data: Union[TransactionUpdate, dict],
    ) -> Transaction:
        """
        Edit a transaction and apply the balance difference.

        Raises:
            NotFoundError: If the transaction is not this user's
        """
        self._ensure_open()
        old = self.ledger.get_transaction(self.user_id, transaction_id)
        if old is None:
            raise NotFoundError(f"Transaction {transaction_id!r} not found")

        new = self.ledger.update_transaction(self.user_id, transaction_id, data)
        if new.account_id == old.account_id:
            deltas = [(new.account_id, new.amount - old.amount)]
        else:
            deltas = [(old.account_id, -old.amount), (new.account_id, new.amount)]
        self._apply_deltas(deltas)
        self._changed()
        return new

    def remove_transaction(self, transaction_id: str) -> bool:
        """Delete a transaction and reverse its balance effect. False if absent."""
        self._ensure_open()
        old = self.ledger.get_transaction(self.user_id, transaction_id)
        if old is None or not self.ledger.remove_transaction(self.user_id, transaction_id):
            return False
        self._apply_deltas([(old.account_id, -old.amount)])
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Savings
    # ------------------------------------------------------------------

    def get_savings_allocations(self) -> list[SavingsAllocation]:
        return self.ledger.get_savings_allocations(self.user_id)

    def allocate_savings(self, data: Union[SavingsAllocationInput, dict]) -> SavingsAllocation:
        """Deposit into savings (account balance drops) or withdraw (it rises)."""
        self._ensure_open()
        allocation = self.ledger.add_savings_allocation(self.user_id, data)
        self._apply_deltas([(allocation.from_account_id, allocation.account_delta)])
        self._changed()
        return allocation

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def totals(self) -> Totals:
        return self.reconciler.calculate_totals(self.user_id)

    def category_totals(self) -> dict[str, Decimal]:
        return self.reconciler.category_totals(self.user_id)

    def verify_balances(self) -> list[ReconciliationReport]:
        return [
            self.reconciler.verify_account(self.user_id, account.id)
            for account in self.get_accounts()
        ]

    def rebuild_balances(self) -> list[ReconciliationReport]:
        """Repair drift on every account. Returns the reports that had drift."""
        self._ensure_open()
        repaired = [
            report for report in (
                self.reconciler.rebuild_balance(self.user_id, account.id)
                for account in self.get_accounts()
            )
            if not report.is_consistent
        ]
        if repaired:
            self._changed()
        return repaired

    # ------------------------------------------------------------------
    # Spending limits
    # ------------------------------------------------------------------

    def get_spending_limits(self) -> list[SpendingLimit]:
        return self.limit_store.get_limits(self.user_id)

    def set_spending_limit(
        self,
        limit_type: str,
        amount: Union[Decimal, int, str],
        period: LimitPeriod = LimitPeriod.MONTHLY,
    ) -> SpendingLimit:
        self._ensure_open()
        limit = self.limit_store.set_limit(self.user_id, limit_type, amount, period)
        self._changed()
        return limit

    def spending_limit_status(self) -> Optional[SpendingLimitStatusResponse]:
        return self.limits.get_status(self.user_id)

    def check_spending_alerts(self) -> Optional[SpendingAlert]:
        return self.limits.check(self.user_id)

    def start_limit_monitor(
        self,
        on_alert: Callable[[SpendingAlert], None],
        interval_seconds: Optional[float] = None,
    ) -> SpendingLimitMonitor:
        """Watch limits on every data-update and, with a running loop, on a timer."""
        self._ensure_open()
        self.stop_limit_monitor()
        self._monitor = SpendingLimitMonitor(
            self.limits,
            self.bus,
            self.user_id,
            on_alert,
            interval_seconds=interval_seconds or self._limit_settings.poll_interval_seconds,
        )
        self._monitor.start()
        return self._monitor

    def stop_limit_monitor(self) -> None:
        if self._monitor is not None:
            self._monitor.stop()
            self._monitor = None


def create_storage(settings: Optional[Settings] = None) -> KeyValueStoreInterface:
    """
    Build the configured persistence substrate.

    Falls back to in-memory storage (with a warning) if the data
    directory cannot be used.
    """
    settings = settings or get_settings()
    if settings.storage.backend == "memory":
        return InMemoryKeyValueStore()
    try:
        return JsonFileKeyValueStore(settings.storage.data_path)
    except StorageError as e:
        logger.warning("storage_unavailable_using_memory", error=str(e))
        return InMemoryKeyValueStore()


def create_session(
    user_id: str,
    storage: Optional[KeyValueStoreInterface] = None,
    settings: Optional[Settings] = None,
    audit: bool = True,
    seed: bool = True,
    clock: Callable[[], datetime] = utc_now,
) -> FinanceSession:
    """
    Factory function to create a session with all components wired.

    Args:
        user_id: Opaque identity of the signed-in user
        storage: Substrate to use; built from settings when None
        audit: Persist audit events next to the user's data.
               Set to False for local-only audit logging.
        seed: Create the default Cash account and limits for a new user
    """
    settings = settings or get_settings()
    if storage is None:
        storage = create_storage(settings)
    audit_logger = AuditLogger(KeyValueAuditStorage(storage)) if audit else AuditLogger()

    session = FinanceSession(
        user_id,
        storage,
        settings=settings,
        audit_logger=audit_logger,
        clock=clock,
    )
    if seed:
        session.seed()
    logger.info("session_created", user_id=user_id, backend=type(storage).__name__)
    return session
