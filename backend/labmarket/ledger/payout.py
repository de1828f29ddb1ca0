"""Parimutuel payout arithmetic.

Winners split the whole pool in proportion to their stake on the winning
side. Division floors; the remainder stays in the pool account.
"""

from .models import Outcome


def compute_payout(stake: int, pool: int, winning_total: int) -> int:
    """Return floor(stake * pool / winning_total).

    Args:
        stake: Claimant's stake on the winning side
        pool: Total staked on both sides when the result was set
        winning_total: Total staked on the winning side when the result was set

    Raises:
        ValueError: If winning_total is not positive or stake exceeds it
    """
    if winning_total <= 0:
        raise ValueError("Winning side total must be positive")
    if stake < 0 or stake > winning_total:
        raise ValueError(f"Stake {stake} outside [0, {winning_total}]")
    return stake * pool // winning_total


def quote(stake_on_side0: int, stake_on_side1: int, total_bet0: int, total_bet1: int, outcome: Outcome) -> int:
    """Payout a bettor would receive if ``outcome`` won with current totals."""
    if outcome == Outcome.SIDE0:
        stake, winning_total = stake_on_side0, total_bet0
    elif outcome == Outcome.SIDE1:
        stake, winning_total = stake_on_side1, total_bet1
    else:
        return 0
    if stake == 0 or winning_total == 0:
        return 0
    return compute_payout(stake, total_bet0 + total_bet1, winning_total)
