"""Tests for spending limit storage, evaluation, alerting and monitoring."""

import asyncio
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from budgee.events import DATA_UPDATE, ChangeNotificationBus
from budgee.exceptions import ValidationError
from budgee.models.limits import (
    LimitPeriod,
    LimitStatus,
    SpendingLimit,
    SpendingLimitState,
    SpendingLimitStatusResponse,
)
from budgee.services.limits import (
    SpendingAlertTracker,
    SpendingLimitEvaluator,
    SpendingLimitMonitor,
    build_limit_state,
    classify,
    period_elapsed,
)

USER = "user-1"
START = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _spend(ledger, account_id, amount, category="Food", **extra):
    return ledger.add_transaction(USER, {
        "description": "Purchase",
        "amount": f"-{amount}",
        "category": category,
        "account_id": account_id,
        **extra,
    })


class TestClassify:
    """Two-tier classification."""

    @pytest.mark.parametrize("spent,status", [
        ("0", LimitStatus.OK),
        ("79.99", LimitStatus.OK),
        ("80", LimitStatus.NEAR_LIMIT),
        ("99.99", LimitStatus.NEAR_LIMIT),
        ("100", LimitStatus.EXCEEDED),
        ("250", LimitStatus.EXCEEDED),
    ])
    def test_boundaries(self, spent, status):
        """Test thresholds are inclusive at 80% and 100%."""
        _, result = classify(Decimal("100"), Decimal(spent))
        assert result == status

    def test_percentage(self):
        """Test the percentage is spend over amount."""
        percentage, _ = classify(Decimal("200"), Decimal("50"))
        assert percentage == 25.0

    def test_disabled_limit(self):
        """Test amount 0 never classifies beyond OK."""
        assert classify(Decimal("0"), Decimal("1000")) == (None, LimitStatus.OK)

    def test_custom_near_threshold(self):
        """Test the near-limit threshold is configurable."""
        _, result = classify(Decimal("100"), Decimal("70"), near_limit_percent=70.0)
        assert result == LimitStatus.NEAR_LIMIT


class TestBuildLimitState:
    """build_limit_state."""

    def test_exceeded_state(self):
        """Test remaining floors at zero and both flags are set."""
        state = build_limit_state(SpendingLimit(type="Food", amount=Decimal("100")), Decimal("120"))
        assert state.status == LimitStatus.EXCEEDED
        assert state.remaining == 0
        assert state.is_exceeded
        assert state.is_near_limit
        assert state.percentage == 120.0

    def test_ok_state(self):
        """Test remaining is amount minus spend."""
        state = build_limit_state(SpendingLimit(type="Food", amount=Decimal("100")), Decimal("30.50"))
        assert state.status == LimitStatus.OK
        assert state.remaining == Decimal("69.50")
        assert not state.is_near_limit

    def test_disabled_state(self):
        """Test a disabled limit reports no percentage and no remaining."""
        state = build_limit_state(SpendingLimit(type="overall"), Decimal("500"))
        assert state.percentage is None
        assert state.remaining == 0
        assert state.status == LimitStatus.OK
        assert not state.is_exceeded


class TestSpendingLimitStore:
    """Limit configuration CRUD."""

    def test_set_limit(self, limit_store):
        """Test a new limit starts its window now."""
        limit = limit_store.set_limit(USER, "Food", "300")
        assert limit.amount == Decimal("300")
        assert limit.period == LimitPeriod.MONTHLY
        assert limit.last_reset == START
        assert limit_store.get_limits(USER) == [limit]

    def test_set_limit_replaces_same_type_and_period(self, limit_store):
        """Test (type, period) identifies a limit."""
        limit_store.set_limit(USER, "Food", "300")
        limit_store.set_limit(USER, "Food", "50", LimitPeriod.WEEKLY)
        limit_store.set_limit(USER, "Food", "400")

        limits = limit_store.get_limits(USER)
        assert len(limits) == 2
        amounts = {limit.period: limit.amount for limit in limits}
        assert amounts == {LimitPeriod.MONTHLY: Decimal("400"), LimitPeriod.WEEKLY: Decimal("50")}

    def test_period_accepts_plain_string(self, limit_store):
        """Test the period may be passed by value."""
        assert limit_store.set_limit(USER, "overall", "20", "daily").period == LimitPeriod.DAILY

    @pytest.mark.parametrize("limit_type,amount,field", [
        ("Groceries", "100", "type"),
        ("Food", "-1", "amount"),
        ("Food", "abc", "amount"),
        ("Food", "NaN", "amount"),
        ("Food", "Infinity", "amount"),
    ])
    def test_invalid_limits(self, limit_store, limit_type, amount, field):
        """Test unknown types and bad amounts raise ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            limit_store.set_limit(USER, limit_type, amount)
        assert exc_info.value.fields == [field]
        assert limit_store.get_limits(USER) == []

    def test_default_limits(self, limit_store):
        """Test defaults are one disabled overall limit per period."""
        limits = limit_store.initialize_default_limits(USER)
        assert {(limit.type, limit.period) for limit in limits} == {
            ("overall", LimitPeriod.DAILY),
            ("overall", LimitPeriod.WEEKLY),
            ("overall", LimitPeriod.MONTHLY),
        }
        assert all(not limit.is_enabled for limit in limits)

    def test_default_limits_keep_existing(self, limit_store):
        """Test initialising defaults does not overwrite configured limits."""
        limit_store.set_limit(USER, "overall", "900")
        limits = limit_store.initialize_default_limits(USER)
        monthly = [limit for limit in limits if limit.period == LimitPeriod.MONTHLY]
        assert [limit.amount for limit in monthly] == [Decimal("900")]

    def test_limits_are_per_user(self, limit_store):
        """Test another user's limits are separate."""
        limit_store.set_limit(USER, "Food", "300")
        assert limit_store.get_limits("user-2") == []


class TestPeriodElapsed:
    """Period rollover rules."""

    def test_daily(self):
        """Test daily limits roll over after 24 hours."""
        limit = SpendingLimit(type="overall", period=LimitPeriod.DAILY, last_reset=START)
        assert not period_elapsed(limit, datetime(2026, 3, 16, 11, 59, tzinfo=timezone.utc))
        assert period_elapsed(limit, datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc))

    def test_weekly(self):
        """Test weekly limits roll over after 7 days."""
        limit = SpendingLimit(type="overall", period=LimitPeriod.WEEKLY, last_reset=START)
        assert not period_elapsed(limit, datetime(2026, 3, 22, 11, 0, tzinfo=timezone.utc))
        assert period_elapsed(limit, datetime(2026, 3, 22, 12, 0, tzinfo=timezone.utc))

    def test_monthly(self):
        """Test monthly limits roll over when the calendar month changes."""
        limit = SpendingLimit(type="overall", last_reset=START)
        assert not period_elapsed(limit, datetime(2026, 3, 31, 23, 59, tzinfo=timezone.utc))
        assert period_elapsed(limit, datetime(2026, 4, 1, 0, 0, tzinfo=timezone.utc))


class TestEvaluatorStatus:
    """SpendingLimitEvaluator.get_status."""

    def test_not_ready_returns_none(self, limit_settings):
        """Test an unwired evaluator degrades to None."""
        evaluator = SpendingLimitEvaluator(settings=limit_settings)
        assert not evaluator.is_ready
        assert evaluator.get_status(USER) is None
        assert evaluator.check(USER) is None

    def test_storage_failure_returns_none(self, storage, evaluator):
        """Test unreadable limits degrade to None."""
        storage.put_raw(f"budgee_spending_limits_{USER}", "{broken")
        assert evaluator.get_status(USER) is None

    def test_status_by_category_and_overall(self, ledger, bank, limit_store, evaluator):
        """Test category limits only count their category; overall counts all."""
        limit_store.set_limit(USER, "Food", "100")
        limit_store.set_limit(USER, "overall", "1000")
        _spend(ledger, bank.id, "85")
        _spend(ledger, bank.id, "40", category="Transportation")

        status = evaluator.get_status(USER)
        food = status.get("Food")
        assert food.current_spending == Decimal("85")
        assert food.status == LimitStatus.NEAR_LIMIT
        assert status.get("overall").current_spending == Decimal("125")
        assert status.overall_status == LimitStatus.NEAR_LIMIT

    def test_income_does_not_offset_spend(self, ledger, bank, limit_store, evaluator):
        """Test only expenses count toward a limit."""
        limit_store.set_limit(USER, "overall", "100")
        _spend(ledger, bank.id, "90")
        ledger.add_transaction(USER, {
            "description": "Pay", "amount": "500", "category": "Income", "account_id": bank.id,
        })
        assert evaluator.get_status(USER).get("overall").current_spending == Decimal("90")

    def test_spend_before_window_excluded(self, ledger, bank, limit_store, evaluator):
        """Test transactions before last_reset do not count."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "70", date=date(2026, 3, 10))
        _spend(ledger, bank.id, "5")
        assert evaluator.get_status(USER).get("Food").current_spending == Decimal("5")

    def test_elapsed_period_resets_window(self, ledger, bank, limit_store, evaluator, clock):
        """Test a rolled-over limit starts counting afresh and is saved."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "95")
        clock.advance(days=18)

        status = evaluator.get_status(USER)
        assert status.get("Food").current_spending == 0
        assert limit_store.get_limits(USER)[0].last_reset == clock()


class TestSelectAlert:
    """Alert precedence."""

    def _status(self, *states):
        return SpendingLimitStatusResponse(limits=list(states))

    def test_exceeded_takes_precedence(self):
        """Test only exceeded limits appear when any is exceeded."""
        alert = SpendingLimitEvaluator.select_alert(self._status(
            SpendingLimitState(type="Food", amount=Decimal("100"), percentage=85.0, status=LimitStatus.NEAR_LIMIT),
            SpendingLimitState(type="Housing", amount=Decimal("100"), percentage=120.0, status=LimitStatus.EXCEEDED),
            SpendingLimitState(type="overall", amount=Decimal("500"), percentage=101.0, status=LimitStatus.EXCEEDED),
        ))
        assert alert.kind == LimitStatus.EXCEEDED
        assert alert.types == ["Housing", "overall"]
        assert alert.title == "Spending limit reached"

    def test_near_limit_alert(self):
        """Test near-limit alerts list every near limit."""
        alert = SpendingLimitEvaluator.select_alert(self._status(
            SpendingLimitState(type="Food", amount=Decimal("100"), percentage=85.0, status=LimitStatus.NEAR_LIMIT),
            SpendingLimitState(type="Housing", amount=Decimal("100"), percentage=10.0),
        ))
        assert alert.kind == LimitStatus.NEAR_LIMIT
        assert alert.types == ["Food"]

    def test_nothing_to_alert(self):
        """Test all-OK or unavailable status gives no alert."""
        assert SpendingLimitEvaluator.select_alert(self._status(
            SpendingLimitState(type="overall", amount=Decimal("0")),
        )) is None
        assert SpendingLimitEvaluator.select_alert(None) is None


class TestAlertTracking:
    """check() surfaces each state change once."""

    def test_alert_once_per_state(self, ledger, bank, limit_store, evaluator):
        """Test unchanged data does not repeat an alert."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "85")
        assert evaluator.check(USER).kind == LimitStatus.NEAR_LIMIT
        assert evaluator.check(USER) is None

    def test_escalation_alerts_again(self, ledger, bank, limit_store, evaluator):
        """Test moving from near-limit to exceeded raises a new alert."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "85")
        evaluator.check(USER)
        _spend(ledger, bank.id, "20")
        alert = evaluator.check(USER)
        assert alert.kind == LimitStatus.EXCEEDED
        assert alert.types == ["Food"]

    def test_oscillation_is_suppressed(self, ledger, bank, limit_store, evaluator):
        """Test hovering around 100% alerts once until spend drops past the margin."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "95")
        assert evaluator.check(USER).kind == LimitStatus.NEAR_LIMIT

        nudge = _spend(ledger, bank.id, "10")
        assert evaluator.check(USER).kind == LimitStatus.EXCEEDED

        # 95% is within the 5% margin, so exceeded is still considered surfaced
        ledger.remove_transaction(USER, nudge.id)
        assert evaluator.check(USER) is None
        nudge = _spend(ledger, bank.id, "10")
        assert evaluator.check(USER) is None
        ledger.remove_transaction(USER, nudge.id)
        assert evaluator.check(USER) is None
        assert evaluator.get_status(USER).get("Food").status == LimitStatus.NEAR_LIMIT

    def test_release_below_margin_then_recross(self, ledger, bank, limit_store, evaluator):
        """Test a released severity surfaces again on the next crossing."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "90")
        nudge = _spend(ledger, bank.id, "15")
        assert evaluator.check(USER).kind == LimitStatus.EXCEEDED

        ledger.remove_transaction(USER, nudge.id)
        assert evaluator.check(USER) is None

        _spend(ledger, bank.id, "15")
        assert evaluator.check(USER).kind == LimitStatus.EXCEEDED

    def test_tracker_reset(self, ledger, bank, limit_store, evaluator):
        """Test resetting the tracker re-surfaces current alerts."""
        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "85")
        evaluator.check(USER)
        evaluator.tracker.reset(USER)
        assert evaluator.check(USER).kind == LimitStatus.NEAR_LIMIT

    def test_near_limit_stays_quiet_while_another_is_exceeded(self, ledger, bank, limit_store, evaluator):
        """Test a limit newly nearing does not alert while another is exceeded."""
        limit_store.set_limit(USER, "Food", "100")
        limit_store.set_limit(USER, "Transportation", "100")
        _spend(ledger, bank.id, "120")
        alert = evaluator.check(USER)
        assert alert.kind == LimitStatus.EXCEEDED
        assert alert.types == ["Food"]

        _spend(ledger, bank.id, "85", category="Transportation")
        assert evaluator.check(USER) is None
        status = evaluator.get_status(USER)
        assert status.overall_status == LimitStatus.EXCEEDED
        assert status.get("Transportation").status == LimitStatus.NEAR_LIMIT

    def test_exceeded_alert_lists_every_exceeded_limit(self, ledger, bank, limit_store, evaluator):
        """Test a newly exceeded limit alerts together with ones already surfaced."""
        limit_store.set_limit(USER, "Food", "100")
        limit_store.set_limit(USER, "Transportation", "100")
        _spend(ledger, bank.id, "120")
        assert evaluator.check(USER).types == ["Food"]

        _spend(ledger, bank.id, "150", category="Transportation")
        alert = evaluator.check(USER)
        assert alert.kind == LimitStatus.EXCEEDED
        assert set(alert.types) == {"Food", "Transportation"}
        assert evaluator.check(USER) is None

    def test_tracker_hysteresis_directly(self):
        """Test the tracker releases near-limit only below 75%."""
        tracker = SpendingAlertTracker(hysteresis_percent=5.0, near_limit_percent=80.0)

        def state(percentage, status):
            return SpendingLimitState(type="Food", amount=Decimal("100"), percentage=percentage, status=status)

        assert tracker.update(USER, [state(81.0, LimitStatus.NEAR_LIMIT)])
        assert tracker.update(USER, [state(78.0, LimitStatus.OK)]) == []
        assert tracker.update(USER, [state(82.0, LimitStatus.NEAR_LIMIT)]) == []
        assert tracker.update(USER, [state(70.0, LimitStatus.OK)]) == []
        assert tracker.surfaced(USER, state(70.0, LimitStatus.OK)) == LimitStatus.OK
        assert tracker.update(USER, [state(80.0, LimitStatus.NEAR_LIMIT)])


class TestSpendingLimitMonitor:
    """Event- and timer-driven checks."""

    def test_checks_on_start_and_data_update(self, ledger, bank, limit_store, evaluator):
        """Test the monitor reacts to data-update without an event loop."""
        bus = ChangeNotificationBus()
        alerts = []
        monitor = SpendingLimitMonitor(evaluator, bus, USER, alerts.append, interval_seconds=60)
        limit_store.set_limit(USER, "Food", "100")

        monitor.start()
        assert monitor.running
        assert not monitor.polling
        assert alerts == []

        _spend(ledger, bank.id, "120")
        bus.publish(DATA_UPDATE)
        assert [alert.kind for alert in alerts] == [LimitStatus.EXCEEDED]

    def test_stop_unsubscribes(self, evaluator):
        """Test stop() detaches from the bus."""
        bus = ChangeNotificationBus()
        monitor = SpendingLimitMonitor(evaluator, bus, USER, lambda alert: None, interval_seconds=60)
        monitor.start()
        assert bus.subscriber_count(DATA_UPDATE) == 1
        monitor.stop()
        assert bus.subscriber_count(DATA_UPDATE) == 0
        assert not monitor.running

    def test_callback_errors_are_contained(self, ledger, bank, limit_store, evaluator):
        """Test a failing callback does not break the monitor."""
        def explode(alert):
            raise RuntimeError("ui gone")

        limit_store.set_limit(USER, "Food", "100")
        _spend(ledger, bank.id, "120")
        monitor = SpendingLimitMonitor(evaluator, ChangeNotificationBus(), USER, explode, interval_seconds=60)
        monitor.start()
        assert monitor.running

    def test_polls_on_running_loop(self, ledger, bank, limit_store, evaluator):
        """Test the timer picks up changes made without a notification."""
        limit_store.set_limit(USER, "Food", "100")
        alerts = []

        async def scenario():
            monitor = SpendingLimitMonitor(
                evaluator, ChangeNotificationBus(), USER, alerts.append, interval_seconds=0.01
            )
            monitor.start()
            assert monitor.polling
            _spend(ledger, bank.id, "85")
            await asyncio.sleep(0.1)
            monitor.stop()
            await asyncio.sleep(0)
            return monitor

        monitor = asyncio.run(scenario())
        assert not monitor.polling
        assert [alert.kind for alert in alerts] == [LimitStatus.NEAR_LIMIT]
