"""Notification models."""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    EXPERIMENT_CREATED = "experiment_created"
    DEPOSITED = "deposited"
    UNDEPOSITED = "undeposited"
    BET_PLACED = "bet_placed"
    BET_RETURNED = "bet_returned"
    RESULT_SET = "result_set"
    ADMIN_WITHDREW = "admin_withdrew"
    ADMIN_CLOSED = "admin_closed"
    PROFIT_CLAIMED = "profit_claimed"
    ROLE_CHANGED = "role_changed"


def generate_notification_id() -> str:
    """Generate unique notification ID with ntf_ prefix."""
    return f"ntf_{uuid4().hex[:8]}"


class Notification(BaseModel):
    """Fire-and-forget record of a committed ledger transition."""

    id: str = Field(default_factory=generate_notification_id)
    kind: NotificationKind
    experiment_id: int | None = None
    participant: str | None = None
    amount: int | None = None
    amount0: int | None = None
    amount1: int | None = None
    data: dict[str, str | int | None] = Field(default_factory=dict)
    emitted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __str__(self) -> str:
        parts = [self.kind.value]
        if self.experiment_id is not None:
            parts.append(f"experiment={self.experiment_id}")
        if self.participant:
            parts.append(f"participant={self.participant}")
        if self.amount is not None:
            parts.append(f"amount={self.amount}")
        if self.amount0 is not None or self.amount1 is not None:
            parts.append(f"amounts=({self.amount0}, {self.amount1})")
        return " ".join(parts)
