"""
Shared fixtures for the Budgee core tests.

Every test gets a fresh in-memory substrate and a controllable clock.
No test touches the network or the real data directory.
"""

from datetime import datetime, timedelta, timezone

import pytest

from budgee.config import LedgerSettings, SecuritySettings, SpendingLimitSettings
from budgee.orchestrator import FinanceSession
from budgee.services.ledger import BalanceReconciler, LedgerStore
from budgee.services.limits import SpendingLimitEvaluator, SpendingLimitStore
from budgee.services.security import AppLockController, PinSecurityModule
from budgee.services.storage import InMemoryKeyValueStore
from budgee.validation import LedgerValidator

USER = "user-1"
OTHER_USER = "user-2"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class CorruptibleStore(InMemoryKeyValueStore):
    """In-memory store that can hold text which is not valid JSON."""

    def put_raw(self, key: str, raw: str) -> None:
        self._data[key] = raw


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return CorruptibleStore()


@pytest.fixture
def ledger(storage, clock):
    return LedgerStore(storage, validator=LedgerValidator(LedgerSettings()), clock=clock)


@pytest.fixture
def reconciler(ledger):
    return BalanceReconciler(ledger)


@pytest.fixture
def bank(ledger):
    """A bank account with 1000 opening balance for USER."""
    return ledger.add_account(USER, {"name": "Main Bank", "type": "Bank", "balance": "1000"})


@pytest.fixture
def security_settings():
    return SecuritySettings(max_failed_attempts=5, lockout_minutes=15)


@pytest.fixture
def pins(storage, clock, security_settings):
    return PinSecurityModule(storage, settings=security_settings, clock=clock)


@pytest.fixture
def app_lock(pins, clock):
    return AppLockController(pins, clock=clock)


@pytest.fixture
def limit_settings():
    return SpendingLimitSettings(near_limit_percent=80.0, hysteresis_percent=5.0)


@pytest.fixture
def limit_store(storage, clock):
    return SpendingLimitStore(storage, clock=clock)


@pytest.fixture
def evaluator(reconciler, limit_store, limit_settings, clock):
    return SpendingLimitEvaluator(reconciler, limit_store, settings=limit_settings, clock=clock)


@pytest.fixture
def session(storage, clock):
    finance_session = FinanceSession(USER, storage, clock=clock)
    yield finance_session
    finance_session.close()
