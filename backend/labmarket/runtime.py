"""Wiring: build a ledger with its collaborators from settings."""

from __future__ import annotations

import logging
from pathlib import Path

from labmarket.clock import Clock, SystemClock
from labmarket.config import Settings, get_settings
from labmarket.ledger import ExperimentLedger
from labmarket.services.assets import AssetClient, InMemoryToken, create_asset_client
from labmarket.services.notifications import NotificationBus, log_subscriber
from labmarket.storage import LedgerState, make_file_subscriber, save_state

logger = logging.getLogger(__name__)


class LedgerRuntime:
    """A ledger, its paper token and the settings that built them."""

    def __init__(
        self,
        settings: Settings,
        ledger: ExperimentLedger,
        token: InMemoryToken,
        assets: AssetClient,
        data_dir: Path | None = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.token = token
        self.assets = assets
        self.data_dir = data_dir or settings.data_dir

    def snapshot_state(self) -> LedgerState:
        with self.ledger.consistent_view() as store:
            return LedgerState.from_store(store, assets=self.token.snapshot())

    def save(self) -> Path:
        """Write the last committed state to disk.

        The write happens inside the ledger lock, so files land in commit order.
        """
        with self.ledger.consistent_view() as store:
            state = LedgerState.from_store(store, assets=self.token.snapshot())
            return save_state(state, self.data_dir)

    def _require_paper_mode(self, action: str) -> None:
        if not self.settings.assets.paper_mode:
            raise RuntimeError(f"{action} is only available in paper mode")

    def fund(self, account: str, amount: int) -> int:
        """Paper-mode faucet."""
        self._require_paper_mode("Minting")
        with self.ledger.consistent_view():
            return self.token.mint(account, amount)

    def approve_pool(self, owner: str, amount: int) -> int:
        """Let the pool account pull up to ``amount`` from ``owner``."""
        self._require_paper_mode("Approving")
        with self.ledger.consistent_view():
            self.token.approve(owner, self.assets.account, amount)
            return self.token.allowance(owner, self.assets.account)


def build_runtime(
    state: LedgerState,
    settings: Settings | None = None,
    clock: Clock | None = None,
    data_dir: Path | None = None,
    bus: NotificationBus | None = None,
) -> LedgerRuntime:
    """Restore a ledger from ``state`` and attach notification sinks per settings."""
    settings = settings or get_settings()

    token = InMemoryToken(symbol=settings.assets.symbol, state=state.assets)
    assets = create_asset_client(
        settings.ledger.pool_account, config=settings.assets, token=token
    )

    bus = bus or NotificationBus()
    if settings.notifications.log_to_logger:
        bus.subscribe(log_subscriber)
    if settings.notifications.log_to_file:
        bus.subscribe(make_file_subscriber(data_dir or settings.data_dir))

    ledger = ExperimentLedger(
        assets=assets,
        store=state.to_store(),
        config=settings.ledger,
        clock=clock or SystemClock(),
        bus=bus,
    )
    logger.info(f"Built ledger runtime with {ledger.experiment_count()} experiments")
    return LedgerRuntime(settings, ledger, token, assets, data_dir=data_dir)
