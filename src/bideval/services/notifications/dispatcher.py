"""Outbox dispatch of notifications and other post-commit side effects.

Operations collect NotificationEvents while they run and hand them to the
dispatcher only after the state change is persisted. Delivery is best
effort: failures are logged and returned as warnings for the response
metadata, never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future

from bideval.services.notifications.events import NotificationEvent
from bideval.services.notifications.notifiers import Notifier

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Delivers collected events through a notifier.

    Args:
        notifier: Delivery backend.
        executor: When given, deliveries and side effects run in the
            background and their failures are only logged.
    """

    def __init__(self, notifier: Notifier, executor: Executor | None = None) -> None:
        self._notifier = notifier
        self._executor = executor

    def dispatch(self, events: Iterable[NotificationEvent]) -> list[str]:
        """Deliver events in order and return warnings for failed deliveries."""
        warnings: list[str] = []
        for event in events:
            if self._executor is not None:
                future = self._executor.submit(self._notifier.notify, event)
                future.add_done_callback(
                    _log_background_failure(f"notification {event.event_type.value}")
                )
                continue
            try:
                self._notifier.notify(event)
            except Exception as e:
                logger.warning(
                    "Notification %s for evaluation %s failed: %s",
                    event.event_type.value,
                    event.evaluation_id,
                    e,
                )
                warnings.append(f"Notification '{event.event_type.value}' could not be delivered")
        return warnings

    def run_side_effect(self, name: str, func: Callable[[], None]) -> list[str]:
        """Run a post-commit side effect such as report generation."""
        if self._executor is not None:
            self._executor.submit(func).add_done_callback(_log_background_failure(name))
            return []
        try:
            func()
        except Exception as e:
            logger.warning("Side effect %s failed: %s", name, e)
            return [f"{name} failed"]
        return []


def _log_background_failure(name: str) -> Callable[[Future[None]], None]:
    def callback(future: Future[None]) -> None:
        error = future.exception()
        if error is not None:
            logger.warning("Background %s failed: %s", name, error)

    return callback
