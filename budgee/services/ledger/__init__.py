"""Ledger persistence and balance reconciliation."""

from budgee.services.ledger.reconciler import BalanceReconciler
from budgee.services.ledger.store import (
    ACCOUNTS_KEY,
    SAVINGS_KEY,
    TRANSACTIONS_KEY,
    LedgerStore,
)

__all__ = [
    "ACCOUNTS_KEY",
    "SAVINGS_KEY",
    "TRANSACTIONS_KEY",
    "BalanceReconciler",
    "LedgerStore",
]
