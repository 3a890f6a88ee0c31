"""Notification outbox for evaluation events.

Provides notification events, notifier backends (logging, in-memory, signed
webhook) and the dispatcher that delivers them after each operation.
"""

from bideval.services.notifications.dispatcher import NotificationDispatcher
from bideval.services.notifications.events import (
    NotificationEvent,
    NotificationType,
    notification,
)
from bideval.services.notifications.notifiers import (
    InMemoryNotifier,
    LoggingNotifier,
    NotificationError,
    Notifier,
    WebhookNotifier,
    get_notifier,
)

__all__ = [
    "InMemoryNotifier",
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationError",
    "NotificationEvent",
    "NotificationType",
    "Notifier",
    "WebhookNotifier",
    "get_notifier",
    "notification",
]
