from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    UNSET = "unset"
    SIDE0 = "side0"
    SIDE1 = "side1"


class Role(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    NONE = "none"


class Experiment(BaseModel):
    """One funding pool plus its binary betting market."""

    id: int = Field(ge=0)
    cost_min: int = Field(ge=0)
    cost_max: int = Field(ge=0)
    total_deposited: int = Field(default=0, ge=0)
    total_bet0: int = Field(default=0, ge=0)
    total_bet1: int = Field(default=0, ge=0)
    created_at: datetime
    betting_outcome: Outcome = Outcome.UNSET
    open: bool = True
    # Frozen by admin_set_result; claims divide these, not the live totals.
    settled_pool: int = Field(default=0, ge=0)
    settled_winning_total: int = Field(default=0, ge=0)

    @property
    def total_bet(self) -> int:
        return self.total_bet0 + self.total_bet1

    @property
    def is_resolved(self) -> bool:
        return self.betting_outcome != Outcome.UNSET

    @property
    def funding_goal_met(self) -> bool:
        return self.total_deposited >= self.cost_min

    def side_total(self, outcome: Outcome) -> int:
        if outcome == Outcome.SIDE0:
            return self.total_bet0
        if outcome == Outcome.SIDE1:
            return self.total_bet1
        raise ValueError(f"No betting side for outcome {outcome.value}")


class Position(BaseModel):
    """A participant's rows on one experiment."""

    experiment_id: int
    participant: str
    deposit_amount: int = Field(default=0, ge=0)
    bet0_amount: int = Field(default=0, ge=0)
    bet1_amount: int = Field(default=0, ge=0)

    @property
    def total_bet(self) -> int:
        return self.bet0_amount + self.bet1_amount

    @property
    def is_empty(self) -> bool:
        return not (self.deposit_amount or self.bet0_amount or self.bet1_amount)

    def stake_on(self, outcome: Outcome) -> int:
        if outcome == Outcome.SIDE0:
            return self.bet0_amount
        if outcome == Outcome.SIDE1:
            return self.bet1_amount
        return 0


class FundedExperiment(BaseModel):
    experiment_id: int
    deposit_amount: int


class RoleAssignment(BaseModel):
    primary: str
    secondary: str | None = None


class PayoutQuote(BaseModel):
    """What a bettor would collect under each outcome, and what is claimable now."""

    experiment_id: int
    participant: str
    if_side0: int = 0
    if_side1: int = 0
    claimable: int = 0
