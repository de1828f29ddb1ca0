"""Shared fixtures: a ledger over a paper token with a frozen clock."""

import pytest

from labmarket.clock import FrozenClock
from labmarket.config import LedgerConfig
from labmarket.ledger import ExperimentLedger, ExperimentStore, RoleAssignment
from labmarket.services.assets import AssetClient, InMemoryToken
from labmarket.services.notifications import NotificationBus

PRIMARY = "primary-admin"
SECONDARY = "secondary-admin"
POOL = "labmarket-pool"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def token() -> InMemoryToken:
    return InMemoryToken()


@pytest.fixture
def bus() -> NotificationBus:
    return NotificationBus()


@pytest.fixture
def notifications(bus: NotificationBus) -> list:
    received: list = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def ledger(token: InMemoryToken, clock: FrozenClock, bus: NotificationBus) -> ExperimentLedger:
    store = ExperimentStore(roles=RoleAssignment(primary=PRIMARY, secondary=SECONDARY))
    return ExperimentLedger(
        assets=AssetClient(token, POOL),
        store=store,
        config=LedgerConfig(pool_account=POOL),
        clock=clock,
        bus=bus,
    )


@pytest.fixture
def fund(token: InMemoryToken):
    """Mint to an account and approve the pool for its whole balance."""

    def _fund(account: str, amount: int = 1_000) -> int:
        token.mint(account, amount)
        token.approve(account, POOL, token.balance_of(account))
        return token.balance_of(account)

    return _fund


@pytest.fixture
def check_bet_totals(ledger: ExperimentLedger):
    """Assert each side total equals the sum of its rows."""

    def _check(experiment_id: int) -> None:
        experiment = ledger.get_experiment(experiment_id)
        rows = ledger.store.positions_for(experiment_id)
        assert experiment.total_bet0 == sum(r.bet0_amount for r in rows)
        assert experiment.total_bet1 == sum(r.bet1_amount for r in rows)

    return _check
