"""Experiment ledger: crowdfunding pool plus binary parimutuel market."""

from .access import ADMIN_ROLES, PRIMARY_ONLY, require_role, resolve_role
from .engine import ExperimentLedger
from .exceptions import (
    AmountBelowMinimumError,
    DepositExceedsCapError,
    ExperimentNotFoundError,
    FundingGoalNotMetError,
    InvalidCostBoundsError,
    InvalidIdentityError,
    InvalidOutcomeError,
    LedgerError,
    MarketClosedError,
    MarketOpenError,
    NoBetError,
    NoWinningBetError,
    OutstandingBalancesError,
    ReentrantCallError,
    ResultAlreadySetError,
    ResultNotSetError,
    RoleMismatchError,
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
from .payout import compute_payout
from .store import ExperimentStore

__all__ = [
    "ADMIN_ROLES",
    "PRIMARY_ONLY",
    "require_role",
    "resolve_role",
    "ExperimentLedger",
    "ExperimentStore",
    "compute_payout",
    # Models
    "Experiment",
    "FundedExperiment",
    "Outcome",
    "PayoutQuote",
    "Position",
    "Role",
    "RoleAssignment",
    # Errors
    "LedgerError",
    "AmountBelowMinimumError",
    "DepositExceedsCapError",
    "ExperimentNotFoundError",
    "FundingGoalNotMetError",
    "InvalidCostBoundsError",
    "InvalidIdentityError",
    "InvalidOutcomeError",
    "MarketClosedError",
    "MarketOpenError",
    "NoBetError",
    "NoWinningBetError",
    "OutstandingBalancesError",
    "ReentrantCallError",
    "ResultAlreadySetError",
    "ResultNotSetError",
    "RoleMismatchError",
    "TransferFailedError",
    "UnbetWindowNotElapsedError",
    "WinningSideEmptyError",
]
