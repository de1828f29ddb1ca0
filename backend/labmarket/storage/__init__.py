"""Storage layer for labmarket - file-based persistence.

This package provides:
- Ledger state management (load/save experiments, positions, roles and paper
  asset balances from data/ledger.yaml)
- Notification log (append committed notifications to daily JSONL files)

Writes to ledger.yaml are atomic to prevent corruption.
"""

from .files import log_notification, make_file_subscriber, read_notifications
from .state import (
    LedgerState,
    create_default_state,
    get_data_dir,
    load_state,
    save_state,
)

__all__ = [
    # State management
    "LedgerState",
    "create_default_state",
    "get_data_dir",
    "load_state",
    "save_state",
    # Notification log
    "log_notification",
    "make_file_subscriber",
    "read_notifications",
]
