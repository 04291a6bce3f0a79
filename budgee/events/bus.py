"""
Change Notification Bus

DESIGN DECISION: Notifications carry NO payload. A subscriber that hears
"data-update" must re-read whatever it displays. This keeps subscribers
from acting on stale snapshots taken mid-mutation.

The bus is owned by a session (see budgee.orchestrator.FinanceSession),
never a module-level singleton, so closing the session on logout drops
every subscriber and nothing leaks across a user switch.

Delivery is synchronous, in registration order, before publish() returns.
"""

from typing import Callable

import structlog

DATA_UPDATE = "data-update"
CHAT_HISTORY_CLEARED = "chat-history-cleared"

Callback = Callable[[], None]

logger = structlog.get_logger(__name__)


class Subscription:
    """Handle returned by subscribe(); cancel() is idempotent."""

    def __init__(self, bus: "ChangeNotificationBus", event: str, callback: Callback):
        self._bus = bus
        self.event = event
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class ChangeNotificationBus:
    """Named-event observer registry with synchronous delivery."""

    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event: str, callback: Callback) -> Subscription:
        if self._closed:
            raise RuntimeError("Cannot subscribe to a closed notification bus")
        subscription = Subscription(self, event, callback)
        self._subscriptions.setdefault(event, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.event, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    def subscriber_count(self, event: str) -> int:
        return len(self._subscriptions.get(event, []))

    def publish(self, event: str) -> int:
        """
        Notify every current subscriber of event.

        Subscribers added during delivery hear the next publish, not this one.
        A subscriber that raises is logged and skipped; the rest still run.

        Returns:
            Number of subscribers that were called
        """
        if self._closed:
            return 0

        delivered = 0
        for subscription in list(self._subscriptions.get(event, [])):
            if not subscription.active:
                continue
            delivered += 1
            try:
                subscription.callback()
            except Exception:
                logger.exception("subscriber_failed", notification=event)
        return delivered

    def close(self) -> None:
        """Drop every subscriber. Further publishes are no-ops."""
        for subscribers in self._subscriptions.values():
            for subscription in subscribers:
                subscription.active = False
        self._subscriptions.clear()
        self._closed = True
