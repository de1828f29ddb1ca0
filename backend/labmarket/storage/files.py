"""Notification log: one JSONL file per day in data/notifications/."""

import logging
from pathlib import Path

from labmarket.services.notifications import Notification
from labmarket.storage.state import get_data_dir

logger = logging.getLogger(__name__)


def _notifications_dir(data_dir: Path | None = None) -> Path:
    path = (data_dir or get_data_dir()) / "notifications"
    path.mkdir(parents=True, exist_ok=True)
    return path


def log_notification(notification: Notification, data_dir: Path | None = None) -> Path:
    """Append a notification to data/notifications/{date}.jsonl.

    Each notification is a single JSON object on one line.
    """
    date_str = notification.emitted_at.strftime("%Y-%m-%d")
    log_path = _notifications_dir(data_dir) / f"{date_str}.jsonl"

    try:
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(notification.model_dump_json() + "\n")
    except OSError as e:
        logger.error(f"Failed to log notification {notification.id}: {e}")
        raise

    logger.debug(f"Logged notification {notification.id} to {log_path}")
    return log_path


def read_notifications(date_str: str, data_dir: Path | None = None) -> list[Notification]:
    """Read back the notifications logged on one day (YYYY-MM-DD)."""
    log_path = _notifications_dir(data_dir) / f"{date_str}.jsonl"
    if not log_path.exists():
        return []

    notifications: list[Notification] = []
    with open(log_path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                notifications.append(Notification.model_validate_json(line))
            except ValueError as e:
                logger.warning(f"Skipping malformed line {line_number} in {log_path}: {e}")
    return notifications


def make_file_subscriber(data_dir: Path | None = None):
    """Subscriber that writes every notification to the daily JSONL log."""

    def subscriber(notification: Notification) -> None:
        log_notification(notification, data_dir)

    return subscriber
