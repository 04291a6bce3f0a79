"""Ledger input validation package."""

from budgee.validation.validator import LedgerValidator

__all__ = ["LedgerValidator"]
