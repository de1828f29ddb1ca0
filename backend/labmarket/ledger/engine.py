"""Experiment ledger: funding pool and parimutuel market state machine.

Every public operation runs as one atomic transition:

1. access-control guard
2. state-precondition guards
3. state mutation
4. asset ledger transfer(s)
5. notification(s), published only after the call commits

Any exception inside the call restores the experiment store, and the asset
ledger too when it supports snapshots, to the state it had before the call.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterable, Iterator

from labmarket.clock import Clock, SystemClock
from labmarket.config import LedgerConfig
from labmarket.services.assets import AssetError, AssetLedger, SupportsSnapshot
from labmarket.services.notifications import (
    Notification,
    NotificationBus,
    NotificationKind,
)

from .access import ADMIN_ROLES, PRIMARY_ONLY, require_role, resolve_role
from .exceptions import (
    AmountBelowMinimumError,
    DepositExceedsCapError,
    FundingGoalNotMetError,
    InvalidCostBoundsError,
    InvalidIdentityError,
    InvalidOutcomeError,
    MarketClosedError,
    MarketOpenError,
    NoBetError,
    NoWinningBetError,
    OutstandingBalancesError,
    ReentrantCallError,
    ResultAlreadySetError,
    ResultNotSetError,
    TransferFailedError,
    UnbetWindowNotElapsedError,
    WinningSideEmptyError,
)
from .models import (
    Experiment,
    FundedExperiment,
    Outcome,
    PayoutQuote,
    Position,
    Role,
    RoleAssignment,
)
from .payout import compute_payout, quote
from .store import ExperimentStore

logger = logging.getLogger(__name__)


class ExperimentLedger:
    def __init__(
        self,
        assets: AssetLedger,
        store: ExperimentStore,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        bus: NotificationBus | None = None,
    ):
        self.config = config or LedgerConfig()
        self._assets = assets
        self._store = store
        self._clock = clock or SystemClock()
        self._bus = bus or NotificationBus()

        self._lock = threading.RLock()
        self._active: str | None = None
        self._outbox: list[Notification] = []

        logger.info(
            f"Initialized ExperimentLedger (experiments={len(store)}, "
            f"pool_account={assets.account}, min_unit={self.config.min_unit})"
        )

    @property
    def store(self) -> ExperimentStore:
        return self._store

    @property
    def bus(self) -> NotificationBus:
        return self._bus

    @property
    def unbet_timeout(self) -> timedelta:
        return timedelta(days=self.config.unbet_timeout_days)

    # ========================================================================
    # Transaction plumbing
    # ========================================================================

    @contextmanager
    def _transaction(self, action: str) -> Iterator[None]:
        with self._lock:
            if self._active is not None:
                raise ReentrantCallError(
                    f"{action} called while {self._active} is in progress"
                )
            self._active = action
            store_snapshot = self._store.snapshot()
            asset_snapshot = (
                self._assets.snapshot()
                if isinstance(self._assets, SupportsSnapshot)
                else None
            )
            self._outbox = []
            try:
                yield
            except Exception as e:
                self._store.restore(store_snapshot)
                if asset_snapshot is not None:
                    self._assets.restore(asset_snapshot)
                self._outbox = []
                logger.info(f"Rolled back {action}: {e}")
                raise
            finally:
                self._active = None
            outbox, self._outbox = self._outbox, []

            # Still under the lock so subscribers see commits in order.
            for notification in outbox:
                self._bus.publish(notification)

    @contextmanager
    def consistent_view(self) -> Iterator[ExperimentStore]:
        """Hold the ledger between transitions while the caller reads it.

        Assets touched by the ledger can be read inside the block too; no
        operation commits or rolls back until it exits.
        """
        with self._lock:
            if self._active is not None:
                raise ReentrantCallError(
                    f"State read while {self._active} is in progress"
                )
            yield self._store

    def _emit(self, kind: NotificationKind, **fields) -> None:
        self._outbox.append(Notification(kind=kind, **fields))

    def _push(self, to: str, amount: int, experiment_id: int) -> None:
        """Send ``amount`` from the pool account to ``to``."""
        if amount == 0:
            return
        try:
            ok = self._assets.transfer(to, amount)
        except AssetError as e:
            raise TransferFailedError(
                f"Transfer of {amount} to {to} failed: {e}", experiment_id=experiment_id
            ) from e
        if not ok:
            raise TransferFailedError(
                f"Transfer of {amount} to {to} was refused", experiment_id=experiment_id
            )

    def _pull(self, owner: str, amount: int, experiment_id: int) -> None:
        """Collect ``amount`` from ``owner`` into the pool account."""
        try:
            ok = self._assets.transfer_from(owner, self._assets.account, amount)
        except AssetError as e:
            raise TransferFailedError(
                f"Pull of {amount} from {owner} failed: {e}", experiment_id=experiment_id
            ) from e
        if not ok:
            raise TransferFailedError(
                f"Pull of {amount} from {owner} was refused", experiment_id=experiment_id
            )

    def _require_open(self, experiment: Experiment) -> None:
        if not experiment.open:
            raise MarketClosedError(
                f"Experiment {experiment.id} is closed", experiment_id=experiment.id
            )

    def _require_min_unit(self, amount: int, experiment_id: int | None, what: str) -> None:
        if amount < self.config.min_unit:
            raise AmountBelowMinimumError(
                f"{what} {amount} is below the minimum unit {self.config.min_unit}",
                experiment_id=experiment_id,
            )

    # ========================================================================
    # Creation
    # ========================================================================

    def create_experiment(self, caller: str, cost_min: int, cost_max: int) -> int:
        """Open a new experiment and return its id."""
        with self._transaction("create_experiment"):
            require_role(caller, self._store.roles, ADMIN_ROLES, "create_experiment")

            if cost_min < self.config.min_unit or cost_max < cost_min:
                raise InvalidCostBoundsError(
                    f"Invalid cost bounds ({cost_min}, {cost_max}); need "
                    f"{self.config.min_unit} <= cost_min <= cost_max"
                )

            experiment = self._store.append(
                Experiment(
                    id=self._store.next_id,
                    cost_min=cost_min,
                    cost_max=cost_max,
                    created_at=self._clock.now(),
                )
            )
            self._emit(
                NotificationKind.EXPERIMENT_CREATED,
                experiment_id=experiment.id,
                participant=caller,
                data={"cost_min": cost_min, "cost_max": cost_max},
            )
            logger.info(
                f"Created experiment {experiment.id} (cost {cost_min}..{cost_max}) by {caller}"
            )
        return experiment.id

    # ========================================================================
    # Funding
    # ========================================================================

    def deposit(self, caller: str, experiment_id: int, amount: int) -> None:
        with self._transaction("deposit"):
            experiment = self._store.get(experiment_id)
            self._require_open(experiment)
            self._require_min_unit(amount, experiment_id, "Deposit")

            if experiment.total_deposited + amount > experiment.cost_max:
                raise DepositExceedsCapError(
                    f"Deposit of {amount} would exceed cost_max {experiment.cost_max} "
                    f"(already {experiment.total_deposited})",
                    experiment_id=experiment_id,
                )

            row = self._store.position(experiment_id, caller)
            row.deposit_amount += amount
            experiment.total_deposited += amount

            self._pull(caller, amount, experiment_id)
            self._emit(
                NotificationKind.DEPOSITED,
                experiment_id=experiment_id,
                participant=caller,
                amount=amount,
            )
            logger.info(
                f"Deposit {amount} by {caller} on experiment {experiment_id} "
                f"(total {experiment.total_deposited}/{experiment.cost_max})"
            )

    def undeposit(self, caller: str, experiment_id: int) -> int:
        """Return the caller's whole deposit. A zero row succeeds and moves nothing."""
        with self._transaction("undeposit"):
            experiment = self._store.get(experiment_id)
            self._require_open(experiment)
            amount = self._refund_deposit(experiment, caller)
            if amount == 0:
                logger.debug(f"Undeposit by {caller} on experiment {experiment_id}: nothing to return")
        return amount

    def _refund_deposit(self, experiment: Experiment, participant: str) -> int:
        row = self._store.peek_position(experiment.id, participant)
        if row is None or row.deposit_amount == 0:
            return 0

        amount = row.deposit_amount
        row.deposit_amount = 0
        experiment.total_deposited -= amount

        self._push(participant, amount, experiment.id)
        self._emit(
            NotificationKind.UNDEPOSITED,
            experiment_id=experiment.id,
            participant=participant,
            amount=amount,
        )
        logger.info(
            f"Returned deposit {amount} to {participant} on experiment {experiment.id} "
            f"(total {experiment.total_deposited})"
        )
        return amount

    def admin_withdraw(self, caller: str, experiment_id: int) -> int:
        """Close a funded experiment and send the pool to the primary role."""
        with self._transaction("admin_withdraw"):
            require_role(
                caller, self._store.roles, PRIMARY_ONLY, "admin_withdraw", experiment_id
            )
            experiment = self._store.get(experiment_id)
            self._require_open(experiment)

            if not experiment.funding_goal_met:
                raise FundingGoalNotMetError(
                    f"Experiment {experiment_id} raised {experiment.total_deposited}, "
                    f"needs {experiment.cost_min}",
                    experiment_id=experiment_id,
                )

            # Deposit rows stay as a historical record; only the total is zeroed.
            amount = experiment.total_deposited
            experiment.total_deposited = 0
            experiment.open = False

            self._push(caller, amount, experiment_id)
            self._emit(
                NotificationKind.ADMIN_WITHDREW,
                experiment_id=experiment_id,
                participant=caller,
                amount=amount,
            )
            logger.info(f"Admin withdrew {amount} from experiment {experiment_id}")
        return amount

    def admin_close(self, caller: str, experiment_id: int) -> None:
        """Cancel an experiment that has nothing outstanding."""
        with self._transaction("admin_close"):
            require_role(
                caller, self._store.roles, ADMIN_ROLES, "admin_close", experiment_id
            )
            experiment = self._store.get(experiment_id)
            self._require_open(experiment)

            if experiment.total_deposited or experiment.total_bet0 or experiment.total_bet1:
                raise OutstandingBalancesError(
                    f"Experiment {experiment_id} still holds deposits "
                    f"{experiment.total_deposited} and bets "
                    f"({experiment.total_bet0}, {experiment.total_bet1})",
                    experiment_id=experiment_id,
                )

            experiment.open = False
            self._emit(
                NotificationKind.ADMIN_CLOSED,
                experiment_id=experiment_id,
                participant=caller,
            )
            logger.info(f"Admin closed experiment {experiment_id}")

    def admin_refund(
        self, caller: str, experiment_id: int, participants: Iterable[str]
    ) -> dict[str, int]:
        """Refund listed depositors. Zero rows are skipped."""
        with self._transaction("admin_refund"):
            require_role(
                caller, self._store.roles, ADMIN_ROLES, "admin_refund", experiment_id
            )
            experiment = self._store.get(experiment_id)
            self._require_open(experiment)

            refunded: dict[str, int] = {}
            for participant in participants:
                amount = self._refund_deposit(experiment, participant)
                if amount:
                    refunded[participant] = refunded.get(participant, 0) + amount
            logger.info(
                f"Admin refunded {len(refunded)} depositors on experiment {experiment_id}"
            )
        return refunded

    # ========================================================================
    # Betting
    # ========================================================================

    def bet(self, caller: str, experiment_id: int, amount0: int, amount1: int) -> None:
        """Stake on one or both sides in a single pull."""
        with self._transaction("bet"):
            experiment = self._store.get(experiment_id)
            self._require_open(experiment)

            if amount0 == 0 and amount1 == 0:
                raise AmountBelowMinimumError(
                    "Bet must stake a nonzero amount on at least one side",
                    experiment_id=experiment_id,
                )
            if amount0 != 0:
                self._require_min_unit(amount0, experiment_id, "Side 0 stake")
            if amount1 != 0:
                self._require_min_unit(amount1, experiment_id, "Side 1 stake")

            row = self._store.position(experiment_id, caller)
            row.bet0_amount += amount0
            row.bet1_amount += amount1
            experiment.total_bet0 += amount0
            experiment.total_bet1 += amount1

            self._pull(caller, amount0 + amount1, experiment_id)
            self._emit(
                NotificationKind.BET_PLACED,
                experiment_id=experiment_id,
                participant=caller,
                amount0=amount0,
                amount1=amount1,
            )
            logger.info(
                f"Bet ({amount0}, {amount1}) by {caller} on experiment {experiment_id} "
                f"(totals {experiment.total_bet0}, {experiment.total_bet1})"
            )

    def _return_bet(self, experiment: Experiment, participant: str) -> int:
        row = self._store.peek_position(experiment.id, participant)
        if row is None or row.total_bet == 0:
            return 0

        amount0, amount1 = row.bet0_amount, row.bet1_amount
        row.bet0_amount = 0
        row.bet1_amount = 0
        experiment.total_bet0 -= amount0
        experiment.total_bet1 -= amount1

        self._push(participant, amount0 + amount1, experiment.id)
        self._emit(
            NotificationKind.BET_RETURNED,
            experiment_id=experiment.id,
            participant=participant,
            amount=amount0 + amount1,
            amount0=amount0,
            amount1=amount1,
        )
        logger.info(
            f"Returned bet ({amount0}, {amount1}) to {participant} on experiment {experiment.id}"
        )
        return amount0 + amount1

    def admin_return_bet(
        self, caller: str, experiment_id: int, participants: Iterable[str]
    ) -> dict[str, int]:
        """Unwind listed bettors' stakes. Allowed whether or not the experiment is open."""
        with self._transaction("admin_return_bet"):
            require_role(
                caller, self._store.roles, ADMIN_ROLES, "admin_return_bet", experiment_id
            )
            experiment = self._store.get(experiment_id)

            returned: dict[str, int] = {}
            for participant in participants:
                amount = self._return_bet(experiment, participant)
                if amount:
                    returned[participant] = returned.get(participant, 0) + amount
        return returned

    def admin_set_result(self, caller: str, experiment_id: int, outcome: Outcome | str) -> None:
        """Finalize the winning side. Irreversible."""
        with self._transaction("admin_set_result"):
            require_role(
                caller, self._store.roles, PRIMARY_ONLY, "admin_set_result", experiment_id
            )
            experiment = self._store.get(experiment_id)

            try:
                outcome = Outcome(outcome)
            except ValueError:
                raise InvalidOutcomeError(
                    f"Unknown outcome {outcome!r}", experiment_id=experiment_id
                ) from None
            if outcome == Outcome.UNSET:
                raise InvalidOutcomeError(
                    "Result must be side0 or side1", experiment_id=experiment_id
                )

            if experiment.open:
                raise MarketOpenError(
                    f"Experiment {experiment_id} is still open", experiment_id=experiment_id
                )
            if experiment.is_resolved:
                raise ResultAlreadySetError(
                    f"Experiment {experiment_id} already resolved to "
                    f"{experiment.betting_outcome.value}",
                    experiment_id=experiment_id,
                )

            winning_total = experiment.side_total(outcome)
            if winning_total == 0:
                raise WinningSideEmptyError(
                    f"Winning side has no bets on experiment {experiment_id}",
                    experiment_id=experiment_id,
                )

            experiment.betting_outcome = outcome
            experiment.settled_pool = experiment.total_bet
            experiment.settled_winning_total = winning_total

            self._emit(
                NotificationKind.RESULT_SET,
                experiment_id=experiment_id,
                participant=caller,
                amount=experiment.settled_pool,
                data={"outcome": outcome.value, "winning_total": winning_total},
            )
            logger.info(
                f"Result {outcome.value} set on experiment {experiment_id} "
                f"(pool {experiment.settled_pool}, winning total {winning_total})"
            )

    def unbet(self, caller: str, experiment_id: int) -> int:
        """Escape valve: recover one's own stakes once the timeout has passed unresolved."""
        with self._transaction("unbet"):
            experiment = self._store.get(experiment_id)

            elapsed = self._clock.now() - experiment.created_at
            if elapsed < self.unbet_timeout:
                raise UnbetWindowNotElapsedError(
                    f"Unbet opens {self.config.unbet_timeout_days} days after creation "
                    f"({elapsed.days} days elapsed)",
                    experiment_id=experiment_id,
                )
            if experiment.is_resolved:
                raise ResultAlreadySetError(
                    f"Experiment {experiment_id} already resolved", experiment_id=experiment_id
                )

            amount = self._return_bet(experiment, caller)
            if amount == 0:
                raise NoBetError(
                    f"{caller} has no bet on experiment {experiment_id}",
                    experiment_id=experiment_id,
                )
        return amount

    def claim_bet_profit(self, caller: str, experiment_id: int) -> int:
        with self._transaction("claim_bet_profit"):
            experiment = self._store.get(experiment_id)
            if not experiment.is_resolved:
                raise ResultNotSetError(
                    f"Experiment {experiment_id} has no result yet", experiment_id=experiment_id
                )

            outcome = experiment.betting_outcome
            row = self._store.peek_position(experiment_id, caller)
            stake = row.stake_on(outcome) if row is not None else 0
            if stake == 0:
                raise NoWinningBetError(
                    f"{caller} has no winning bet on experiment {experiment_id}",
                    experiment_id=experiment_id,
                )

            payout = compute_payout(
                stake, experiment.settled_pool, experiment.settled_winning_total
            )

            if outcome == Outcome.SIDE0:
                row.bet0_amount = 0
                experiment.total_bet0 -= stake
            else:
                row.bet1_amount = 0
                experiment.total_bet1 -= stake

            self._push(caller, payout, experiment_id)
            self._emit(
                NotificationKind.PROFIT_CLAIMED,
                experiment_id=experiment_id,
                participant=caller,
                amount=payout,
                data={"stake": stake},
            )
            logger.info(
                f"{caller} claimed {payout} on experiment {experiment_id} (stake {stake})"
            )
        return payout

    # ========================================================================
    # Role administration
    # ========================================================================

    def set_primary(self, caller: str, new_primary: str) -> None:
        with self._transaction("set_primary"):
            require_role(caller, self._store.roles, PRIMARY_ONLY, "set_primary")
            if not new_primary:
                raise InvalidIdentityError("Primary identity cannot be empty")
            self._store.roles = self._store.roles.model_copy(update={"primary": new_primary})
            self._emit(
                NotificationKind.ROLE_CHANGED,
                participant=new_primary,
                data={"role": Role.PRIMARY.value, "changed_by": caller},
            )
            logger.info(f"Primary role moved from {caller} to {new_primary}")

    def set_secondary(self, caller: str, new_secondary: str | None) -> None:
        with self._transaction("set_secondary"):
            require_role(caller, self._store.roles, PRIMARY_ONLY, "set_secondary")
            self._store.roles = self._store.roles.model_copy(
                update={"secondary": new_secondary or None}
            )
            self._emit(
                NotificationKind.ROLE_CHANGED,
                participant=new_secondary,
                data={"role": Role.SECONDARY.value, "changed_by": caller},
            )
            logger.info(f"Secondary role set to {new_secondary} by {caller}")

    # ========================================================================
    # Queries
    # ========================================================================

    def get_experiment(self, experiment_id: int) -> Experiment:
        with self._lock:
            return self._store.get(experiment_id).model_copy()

    def list_experiments(self) -> list[Experiment]:
        with self._lock:
            return [e.model_copy() for e in self._store]

    def experiment_count(self) -> int:
        with self._lock:
            return self._store.next_id

    def get_position(self, experiment_id: int, participant: str) -> Position:
        with self._lock:
            self._store.get(experiment_id)
            row = self._store.peek_position(experiment_id, participant)
            if row is None:
                return Position(experiment_id=experiment_id, participant=participant)
            return row.model_copy()

    def funded_experiments(self, participant: str) -> list[FundedExperiment]:
        with self._lock:
            return [
                FundedExperiment(
                    experiment_id=row.experiment_id, deposit_amount=row.deposit_amount
                )
                for row in self._store.positions_of(participant)
                if row.deposit_amount > 0
            ]

    def quote_payout(self, experiment_id: int, participant: str) -> PayoutQuote:
        with self._lock:
            experiment = self._store.get(experiment_id)
            row = self._store.peek_position(experiment_id, participant) or Position(
                experiment_id=experiment_id, participant=participant
            )
            if experiment.is_resolved:
                # Settled totals only; the losing side pays nothing.
                stake = row.stake_on(experiment.betting_outcome)
                claimable = 0
                if stake:
                    claimable = compute_payout(
                        stake, experiment.settled_pool, experiment.settled_winning_total
                    )
                won_side0 = experiment.betting_outcome == Outcome.SIDE0
                return PayoutQuote(
                    experiment_id=experiment_id,
                    participant=participant,
                    if_side0=claimable if won_side0 else 0,
                    if_side1=0 if won_side0 else claimable,
                    claimable=claimable,
                )
            return PayoutQuote(
                experiment_id=experiment_id,
                participant=participant,
                if_side0=quote(
                    row.bet0_amount, row.bet1_amount,
                    experiment.total_bet0, experiment.total_bet1, Outcome.SIDE0,
                ),
                if_side1=quote(
                    row.bet0_amount, row.bet1_amount,
                    experiment.total_bet0, experiment.total_bet1, Outcome.SIDE1,
                ),
                claimable=0,
            )

    def roles(self) -> RoleAssignment:
        with self._lock:
            return self._store.roles.model_copy()

    def role_of(self, caller: str) -> Role:
        with self._lock:
            return resolve_role(caller, self._store.roles)
