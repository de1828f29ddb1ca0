"""External collaborators: asset ledger and notification delivery."""
