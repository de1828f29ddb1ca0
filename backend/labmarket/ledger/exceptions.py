"""Experiment ledger exceptions.

Every rejection carries a stable ``code`` so off-chain clients can branch on
cause without parsing messages.
"""


class LedgerError(Exception):
    """Base exception for experiment ledger rejections."""

    code: str = "LEDGER_ERROR"

    def __init__(self, message: str, experiment_id: int | None = None):
        super().__init__(message)
        self.message = message
        self.experiment_id = experiment_id

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "detail": self.message,
            "experiment_id": self.experiment_id,
        }


class RoleMismatchError(LedgerError):
    """Caller lacks the required privilege tier."""

    code = "ROLE_MISMATCH"


class ReentrantCallError(LedgerError):
    """Ledger entered again while an operation is in flight."""

    code = "REENTRANT_CALL"


class ExperimentNotFoundError(LedgerError):
    """No experiment with this id."""

    code = "EXPERIMENT_NOT_FOUND"


class MarketClosedError(LedgerError):
    """Operation requires an open experiment."""

    code = "MARKET_CLOSED"


class MarketOpenError(LedgerError):
    """Operation requires a closed experiment."""

    code = "MARKET_OPEN"


class ResultAlreadySetError(LedgerError):
    """Betting outcome already finalized."""

    code = "RESULT_ALREADY_SET"


class ResultNotSetError(LedgerError):
    """Betting outcome not finalized yet."""

    code = "RESULT_NOT_SET"


class WinningSideEmptyError(LedgerError):
    """Nobody staked on the side being finalized."""

    code = "WINNING_SIDE_EMPTY"


class InvalidOutcomeError(LedgerError):
    """Outcome is not one of the two betting sides."""

    code = "INVALID_OUTCOME"


class OutstandingBalancesError(LedgerError):
    """Deposits or bets still outstanding."""

    code = "OUTSTANDING_BALANCES"


class AmountBelowMinimumError(LedgerError):
    """Amount smaller than the minimum unit."""

    code = "AMOUNT_BELOW_MINIMUM"


class DepositExceedsCapError(LedgerError):
    """Deposit would push the pool above cost_max."""

    code = "DEPOSIT_EXCEEDS_CAP"


class InvalidCostBoundsError(LedgerError):
    """Funding bounds rejected at creation."""

    code = "INVALID_COST_BOUNDS"


class FundingGoalNotMetError(LedgerError):
    """Pool below cost_min."""

    code = "FUNDING_GOAL_NOT_MET"


class NoBetError(LedgerError):
    """Caller has no stake to withdraw."""

    code = "NO_BET"


class NoWinningBetError(LedgerError):
    """Caller has no stake on the winning side."""

    code = "NO_WINNING_BET"


class UnbetWindowNotElapsedError(LedgerError):
    """Escape valve not available yet."""

    code = "UNBET_WINDOW_NOT_ELAPSED"


class TransferFailedError(LedgerError):
    """Asset ledger refused or failed a transfer."""

    code = "TRANSFER_FAILED"


class InvalidIdentityError(LedgerError):
    """Role identity is empty."""

    code = "INVALID_IDENTITY"
