"""Delivery adapters that receive persisted notifications.

Transports are best-effort. The ``notifications`` table is the durable
record; a transport failure never loses a notification.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from typing import Any, Mapping, Optional, Protocol

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class NotificationTransport(Protocol):
    """Anything that can push a serialized notification somewhere."""

    def deliver(self, notification: Mapping[str, Any]) -> None:
        ...


class LoggingTransport:
    """Writes each notification to the log. Useful in development."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def deliver(self, notification: Mapping[str, Any]) -> None:
        logger.log(
            self.level,
            "Notification %s to user %s: %s",
            notification.get("id"),
            notification.get("recipient_id"),
            notification.get("title"),
        )


class InMemoryTransport:
    """Thread-safe queue that a polling endpoint (or a test) can drain."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queue: deque[dict] = deque()

    def deliver(self, notification: Mapping[str, Any]) -> None:
        with self._lock:
            self._queue.append(dict(notification))

    def drain(self, recipient_id: Optional[int] = None) -> list[dict]:
        """Remove and return queued notifications, optionally for one recipient."""
        with self._lock:
            if recipient_id is None:
                drained = list(self._queue)
                self._queue.clear()
                return drained
            kept: deque[dict] = deque()
            drained = []
            for item in self._queue:
                if item.get("recipient_id") == recipient_id:
                    drained.append(item)
                else:
                    kept.append(item)
            self._queue = kept
            return drained

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)


class WebhookTransport:
    """POSTs each notification as JSON to an HTTP endpoint.

    The endpoint defaults to ``NOTIFY_WEBHOOK_URL`` and the timeout to
    ``NOTIFY_WEBHOOK_TIMEOUT`` (seconds), both read from the environment.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        load_dotenv()
        resolved_url = url or os.getenv("NOTIFY_WEBHOOK_URL")
        if not resolved_url:
            raise ValueError("Environment variable 'NOTIFY_WEBHOOK_URL' is not set")
        self.url = resolved_url
        self.timeout = (
            timeout
            if timeout is not None
            else float(os.getenv("NOTIFY_WEBHOOK_TIMEOUT", "10"))
        )
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json", **(headers or {})}

    def deliver(self, notification: Mapping[str, Any]) -> None:
        response = self.session.post(
            self.url,
            json=dict(notification),
            headers=self.headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        # Do not log the body; it may contain prize amounts for other users.
        logger.debug(
            "Webhook accepted notification %s (HTTP %s)",
            notification.get("id"),
            response.status_code,
        )


__all__ = [
    "InMemoryTransport",
    "LoggingTransport",
    "NotificationTransport",
    "WebhookTransport",
]
