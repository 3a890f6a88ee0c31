"""Notifier implementations.

Notifiers deliver a single NotificationEvent and raise NotificationError on
failure. Deciding what a failure means is the dispatcher's job.

Environment Variables:
    BIDEVAL_NOTIFY_WEBHOOK_URL: Target URL for the webhook notifier.
    BIDEVAL_NOTIFY_WEBHOOK_SECRET: Shared secret used to sign deliveries.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit, urlunsplit

import httpx
from opentelemetry import trace

from bideval.services.notifications.events import NotificationEvent
from bideval.services.notifications.signing import sign_payload

logger = logging.getLogger(__name__)

NOTIFY_WEBHOOK_URL_ENV = "BIDEVAL_NOTIFY_WEBHOOK_URL"
NOTIFY_WEBHOOK_SECRET_ENV = "BIDEVAL_NOTIFY_WEBHOOK_SECRET"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "BidEval-Notifier/1.0"


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""


@runtime_checkable
class Notifier(Protocol):
    """Delivers one notification event."""

    def notify(self, event: NotificationEvent) -> None:
        """Deliver the event.

        Raises:
            NotificationError: If delivery fails.
        """
        ...


class LoggingNotifier:
    """Writes notifications to the log. Default when no webhook is configured."""

    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            "Notification %s for evaluation %s to %d recipient(s)",
            event.event_type.value,
            event.evaluation_id,
            len(event.recipients),
        )


class InMemoryNotifier:
    """Collects notifications for inspection in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[NotificationEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


def _sanitize_url_for_span(url: str) -> str:
    """Strip userinfo, query and fragment from url."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if not host:
        return "unknown"
    port = f":{parts.port}" if parts.port else ""
    return urlunsplit((parts.scheme, f"{host}{port}", parts.path, "", ""))


class WebhookNotifier:
    """POSTs each event as signed JSON to a webhook URL.

    Each delivery runs in a ``notification.delivery`` span. Non-2xx responses
    and transport errors raise NotificationError.
    """

    def __init__(
        self,
        url: str,
        secret: str,
        *,
        client: httpx.Client | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._url = url
        self._secret = secret
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def notify(self, event: NotificationEvent) -> None:
        tracer = trace.get_tracer("bideval.notifications")
        body = event.model_dump_json().encode("utf-8")
        signature = sign_payload(self._secret, int(time.time()), body)
        headers = {
            **signature.headers,
            "Content-Type": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
        }

        with tracer.start_as_current_span(
            "notification.delivery",
            attributes={
                "bideval.notification_id": event.event_id,
                "bideval.notification_type": event.event_type.value,
                "bideval.evaluation_id": event.evaluation_id,
                "http.method": "POST",
                "http.url": _sanitize_url_for_span(self._url),
            },
        ) as span:
            try:
                response = self._client.post(self._url, content=body, headers=headers)
            except httpx.HTTPError as e:
                span.set_status(trace.StatusCode.ERROR, type(e).__name__)
                span.record_exception(e)
                raise NotificationError(f"Webhook delivery failed: {type(e).__name__}") from e

            span.set_attribute("http.status_code", response.status_code)
            if not 200 <= response.status_code < 300:
                span.set_status(trace.StatusCode.ERROR, f"HTTP {response.status_code}")
                raise NotificationError(f"Webhook delivery failed: HTTP {response.status_code}")

    def close(self) -> None:
        self._client.close()


def get_notifier() -> Notifier:
    """Return a webhook notifier when configured, else a logging notifier."""
    url = os.environ.get(NOTIFY_WEBHOOK_URL_ENV)
    if not url:
        return LoggingNotifier()
    secret = os.environ.get(NOTIFY_WEBHOOK_SECRET_ENV)
    if not secret:
        raise NotificationError(
            f"{NOTIFY_WEBHOOK_SECRET_ENV} must be set when {NOTIFY_WEBHOOK_URL_ENV} is set"
        )
    return WebhookNotifier(url, secret)
