"""
Unit Tests: Betting

Placement, result finalization, parimutuel claims and the timeout unbet.
"""

from datetime import timedelta

import pytest

from labmarket.ledger import (
    AmountBelowMinimumError,
    InvalidOutcomeError,
    MarketClosedError,
    MarketOpenError,
    NoBetError,
    NoWinningBetError,
    Outcome,
    ResultAlreadySetError,
    ResultNotSetError,
    RoleMismatchError,
    UnbetWindowNotElapsedError,
    WinningSideEmptyError,
)
from labmarket.services.notifications import NotificationKind

PRIMARY = "primary-admin"
SECONDARY = "secondary-admin"
POOL = "labmarket-pool"


def test_bet_single_pull_for_both_sides(ledger, token, fund, notifications, check_bet_totals) -> None:
    fund("alice", 100)
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)

    ledger.bet("alice", experiment_id, 50, 30)

    position = ledger.get_position(experiment_id, "alice")
    assert (position.bet0_amount, position.bet1_amount) == (50, 30)
    experiment = ledger.get_experiment(experiment_id)
    assert (experiment.total_bet0, experiment.total_bet1) == (50, 30)
    assert token.balance_of("alice") == 20
    assert token.balance_of(POOL) == 80
    assert notifications[-1].kind == NotificationKind.BET_PLACED
    assert (notifications[-1].amount0, notifications[-1].amount1) == (50, 30)
    check_bet_totals(experiment_id)


def test_bet_rejects_zero_zero(ledger, fund) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    with pytest.raises(AmountBelowMinimumError):
        ledger.bet("alice", experiment_id, 0, 0)


def test_bet_side_below_minimum_unit(ledger, fund, token) -> None:
    ledger.config.min_unit = 5
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)

    with pytest.raises(AmountBelowMinimumError):
        ledger.bet("alice", experiment_id, 10, 4)

    assert ledger.get_position(experiment_id, "alice").total_bet == 0
    assert token.balance_of("alice") == 1_000


def test_bet_requires_open_market(ledger, fund) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.admin_close(PRIMARY, experiment_id)
    with pytest.raises(MarketClosedError):
        ledger.bet("alice", experiment_id, 10, 0)


def test_admin_return_bet_works_after_close(ledger, token, fund, check_bet_totals) -> None:
    fund("alice")
    fund("bob")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.deposit("bob", experiment_id, 10)
    ledger.bet("alice", experiment_id, 40, 60)
    ledger.admin_withdraw(PRIMARY, experiment_id)

    returned = ledger.admin_return_bet(SECONDARY, experiment_id, ["alice", "bob"])

    assert returned == {"alice": 100}
    assert token.balance_of("alice") == 1_000
    experiment = ledger.get_experiment(experiment_id)
    assert (experiment.total_bet0, experiment.total_bet1) == (0, 0)
    check_bet_totals(experiment_id)


def test_admin_return_bet_requires_admin(ledger) -> None:
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    with pytest.raises(RoleMismatchError):
        ledger.admin_return_bet("alice", experiment_id, ["alice"])


def test_set_result_guards(ledger, fund) -> None:
    fund("alice")
    fund("bob")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 100, 0)
    ledger.bet("bob", experiment_id, 0, 50)

    with pytest.raises(MarketOpenError):
        ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE0)

    ledger.deposit("bob", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)

    with pytest.raises(RoleMismatchError):
        ledger.admin_set_result(SECONDARY, experiment_id, Outcome.SIDE0)
    with pytest.raises(InvalidOutcomeError):
        ledger.admin_set_result(PRIMARY, experiment_id, Outcome.UNSET)
    with pytest.raises(InvalidOutcomeError):
        ledger.admin_set_result(PRIMARY, experiment_id, "side2")

    ledger.admin_set_result(PRIMARY, experiment_id, "side0")
    with pytest.raises(ResultAlreadySetError):
        ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE1)

    experiment = ledger.get_experiment(experiment_id)
    assert experiment.betting_outcome == Outcome.SIDE0
    assert experiment.settled_pool == 150
    assert experiment.settled_winning_total == 100


def test_set_result_with_empty_winning_side_scenario(ledger, fund, notifications) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 100, 0)
    ledger.deposit("alice", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    before = ledger.get_experiment(experiment_id)
    count = len(notifications)

    with pytest.raises(WinningSideEmptyError) as exc_info:
        ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE1)

    assert exc_info.value.code == "WINNING_SIDE_EMPTY"
    assert ledger.get_experiment(experiment_id) == before
    assert len(notifications) == count


def test_claim_scenario(ledger, token, fund, notifications, check_bet_totals) -> None:
    fund("alice")
    fund("bob")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 100, 0)
    ledger.bet("bob", experiment_id, 0, 50)
    ledger.deposit("alice", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE0)

    assert ledger.claim_bet_profit("alice", experiment_id) == 150

    assert token.balance_of("alice") == 1_000 - 110 + 150
    assert ledger.get_position(experiment_id, "alice").bet0_amount == 0
    assert notifications[-1].kind == NotificationKind.PROFIT_CLAIMED
    assert notifications[-1].amount == 150

    with pytest.raises(NoWinningBetError):
        ledger.claim_bet_profit("bob", experiment_id)
    with pytest.raises(NoWinningBetError):
        ledger.claim_bet_profit("alice", experiment_id)

    check_bet_totals(experiment_id)


def test_claim_uses_totals_frozen_at_resolution(ledger, token, fund, check_bet_totals) -> None:
    for name in ("alice", "bob", "carol"):
        fund(name)
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 1, 0)
    ledger.bet("bob", experiment_id, 2, 0)
    ledger.bet("carol", experiment_id, 0, 4)
    ledger.deposit("carol", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE0)

    # Pool 7 split over a winning total of 3: floor(7/3) and floor(14/3).
    assert ledger.claim_bet_profit("alice", experiment_id) == 2
    assert ledger.claim_bet_profit("bob", experiment_id) == 4
    # One unit of rounding dust stays in the pool account.
    assert token.balance_of(POOL) == 1
    check_bet_totals(experiment_id)


def test_claim_before_result(ledger, fund) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 10, 0)
    with pytest.raises(ResultNotSetError):
        ledger.claim_bet_profit("alice", experiment_id)


def test_unbet_scenario_after_timeout(ledger, token, clock, fund, check_bet_totals) -> None:
    fund("alice", 100)
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 50, 30)

    clock.advance(timedelta(days=60))
    assert ledger.unbet("alice", experiment_id) == 80

    position = ledger.get_position(experiment_id, "alice")
    assert (position.bet0_amount, position.bet1_amount) == (0, 0)
    assert token.balance_of("alice") == 100
    check_bet_totals(experiment_id)


def test_unbet_before_timeout(ledger, clock, fund) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 50, 0)

    clock.advance(timedelta(days=59, hours=23))
    with pytest.raises(UnbetWindowNotElapsedError):
        ledger.unbet("alice", experiment_id)
    assert ledger.get_position(experiment_id, "alice").bet0_amount == 50


def test_unbet_without_stake(ledger, clock) -> None:
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    clock.advance(timedelta(days=61))
    with pytest.raises(NoBetError):
        ledger.unbet("alice", experiment_id)


def test_unbet_after_resolution(ledger, clock, fund) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 50, 10)
    ledger.deposit("alice", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE1)

    clock.advance(timedelta(days=90))
    with pytest.raises(ResultAlreadySetError):
        ledger.unbet("alice", experiment_id)


def test_quote_payout(ledger, fund) -> None:
    fund("alice")
    fund("bob")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 30, 10)
    ledger.bet("bob", experiment_id, 10, 50)

    quote = ledger.quote_payout(experiment_id, "alice")
    # Pool 100; side0 total 40, side1 total 60.
    assert quote.if_side0 == 30 * 100 // 40
    assert quote.if_side1 == 10 * 100 // 60
    assert quote.claimable == 0

    ledger.deposit("bob", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE1)
    assert ledger.quote_payout(experiment_id, "bob").claimable == 50 * 100 // 60


def test_quote_after_resolution_uses_settled_totals(ledger, fund) -> None:
    fund("alice")
    fund("bob")
    fund("carol")
    experiment_id = ledger.create_experiment(PRIMARY, 10, 500)
    ledger.bet("alice", experiment_id, 30, 0)
    ledger.bet("bob", experiment_id, 10, 0)
    ledger.bet("carol", experiment_id, 0, 60)
    ledger.deposit("bob", experiment_id, 10)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE0)

    before = ledger.quote_payout(experiment_id, "alice")
    ledger.claim_bet_profit("bob", experiment_id)
    after = ledger.quote_payout(experiment_id, "alice")

    # Bob's claim lowers the live side0 total but not alice's quote.
    assert before == after
    assert after.if_side0 == after.claimable == 30 * 100 // 40
    assert after.if_side1 == 0
    assert ledger.quote_payout(experiment_id, "carol").claimable == 0
    assert ledger.claim_bet_profit("alice", experiment_id) == after.claimable
