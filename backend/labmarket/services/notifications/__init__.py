"""Ledger notification service."""

from .bus import NotificationBus, Subscriber, log_subscriber
from .models import Notification, NotificationKind, generate_notification_id

__all__ = [
    "NotificationBus",
    "Subscriber",
    "log_subscriber",
    "Notification",
    "NotificationKind",
    "generate_notification_id",
]
