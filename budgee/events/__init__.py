"""Change notification package."""

from budgee.events.bus import (
    CHAT_HISTORY_CLEARED,
    DATA_UPDATE,
    ChangeNotificationBus,
    Subscription,
)

__all__ = [
    "CHAT_HISTORY_CLEARED",
    "DATA_UPDATE",
    "ChangeNotificationBus",
    "Subscription",
]
