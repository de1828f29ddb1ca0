from __future__ import annotations

from pydantic import BaseModel, Field


class Allowance(BaseModel):
    owner: str
    spender: str
    amount: int = Field(default=0, ge=0)


class TokenState(BaseModel):
    """Serializable snapshot of a paper token."""

    symbol: str = "LAB"
    balances: dict[str, int] = Field(default_factory=dict)
    allowances: list[Allowance] = Field(default_factory=list)

    @property
    def total_supply(self) -> int:
        return sum(self.balances.values())
