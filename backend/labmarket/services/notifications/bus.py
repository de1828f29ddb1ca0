"""In-process notification fan-out."""

from __future__ import annotations

import logging
from typing import Callable

from .models import Notification

logger = logging.getLogger(__name__)

Subscriber = Callable[[Notification], None]


class NotificationBus:
    """Delivers notifications to subscribers without guaranteeing delivery.

    A failing subscriber is logged and skipped; it never fails the ledger
    operation that produced the notification.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self.delivered = 0
        self.failed = 0

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(notification)
                self.delivered += 1
            except Exception as e:
                self.failed += 1
                logger.warning(
                    f"Notification subscriber failed for {notification.kind.value} "
                    f"({notification.id}): {e}"
                )


def log_subscriber(notification: Notification) -> None:
    """Subscriber that writes each notification to the module logger."""
    logger.info(f"Notification: {notification}")
