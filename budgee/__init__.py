"""
Budgee Core - Source Package

The financial data and security core of the Budgee personal finance tracker.
Everything here runs locally for a single user on a single device.

DESIGN PRINCIPLES:
1. Every read and write is scoped by user_id
2. Balances change through exactly one code path (the reconciler)
3. The PIN is never stored in cleartext
4. Derived views degrade to empty/zero states, never crash the caller
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budgee Team"
