"""
Spending Limit Monitor

Re-checks spending limits whenever the ledger changes ("data-update") and
on a fixed interval (default every 5 minutes), forwarding any newly
surfaced alert to a callback.

The polling task runs on the host's asyncio loop. Without a running loop
the monitor still reacts to data-update notifications; it just does not
poll. stop() cancels the task and unsubscribes.
"""

import asyncio
from typing import Callable, Optional

import structlog

from budgee.config import get_settings
from budgee.events import DATA_UPDATE, ChangeNotificationBus, Subscription
from budgee.models.limits import SpendingAlert
from budgee.services.limits.evaluator import SpendingLimitEvaluator

AlertCallback = Callable[[SpendingAlert], None]

logger = structlog.get_logger(__name__)


class SpendingLimitMonitor:
    """Event- and timer-driven wrapper around SpendingLimitEvaluator.check."""

    def __init__(
        self,
        evaluator: SpendingLimitEvaluator,
        bus: ChangeNotificationBus,
        user_id: str,
        on_alert: AlertCallback,
        interval_seconds: Optional[float] = None,
    ):
        self._evaluator = evaluator
        self._bus = bus
        self._user_id = user_id
        self._on_alert = on_alert
        self._interval = interval_seconds or get_settings().limits.poll_interval_seconds
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._subscription is not None

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Subscribe, run one check now, and start polling if a loop is running."""
        if self.running:
            return

        self._subscription = self._bus.subscribe(DATA_UPDATE, self.trigger)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._task = loop.create_task(self._poll())

        logger.info(
            "limit_monitor_started",
            user_id=self._user_id,
            polling=loop is not None,
            interval_seconds=self._interval,
        )
        self.trigger()

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("limit_monitor_stopped", user_id=self._user_id)

    def trigger(self) -> Optional[SpendingAlert]:
        """Run one check and forward a new alert, if any."""
        alert = self._evaluator.check(self._user_id)
        if alert is not None:
            try:
                self._on_alert(alert)
            except Exception:
                logger.exception("limit_alert_callback_failed", user_id=self._user_id)
        return alert

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.trigger()
