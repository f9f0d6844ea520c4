"""Notification fan-out and delivery transports."""

from .dispatcher import (
    NotificationDispatcher,
    mark_all_read,
    mark_read,
    notifications_for,
    resolve_recipients,
    unread_count,
)
from .transports import (
    InMemoryTransport,
    LoggingTransport,
    NotificationTransport,
    WebhookTransport,
)

__all__ = [
    "InMemoryTransport",
    "LoggingTransport",
    "NotificationDispatcher",
    "NotificationTransport",
    "WebhookTransport",
    "mark_all_read",
    "mark_read",
    "notifications_for",
    "resolve_recipients",
    "unread_count",
]
