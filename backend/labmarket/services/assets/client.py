from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from .config import AssetConfig
from .token import InMemoryToken

logger = logging.getLogger(__name__)


@runtime_checkable
class AssetLedger(Protocol):
    """Fungible asset ledger as seen from one bound account."""

    account: str

    def transfer(self, to: str, amount: int) -> bool: ...

    def transfer_from(self, owner: str, to: str, amount: int) -> bool: ...

    def balance_of(self, account: str) -> int: ...

    def approve(self, spender: str, amount: int) -> bool: ...


@runtime_checkable
class SupportsSnapshot(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, state: Any) -> None: ...


class AssetClient:
    """Binds an :class:`InMemoryToken` to the account acting as sender/spender."""

    def __init__(self, token: InMemoryToken, account: str):
        self.token = token
        self.account = account
        logger.info(f"Initialized AssetClient (account={account}, symbol={token.symbol})")

    def transfer(self, to: str, amount: int) -> bool:
        return self.token.transfer(self.account, to, amount)

    def transfer_from(self, owner: str, to: str, amount: int) -> bool:
        return self.token.transfer_from(self.account, owner, to, amount)

    def balance_of(self, account: str) -> int:
        return self.token.balance_of(account)

    def approve(self, spender: str, amount: int) -> bool:
        return self.token.approve(self.account, spender, amount)

    def snapshot(self) -> Any:
        return self.token.snapshot()

    def restore(self, state: Any) -> None:
        self.token.restore(state)


def create_asset_client(
    account: str,
    config: AssetConfig | None = None,
    token: InMemoryToken | None = None,
) -> AssetClient:
    """Create an AssetClient over a paper token."""
    config = config or AssetConfig()
    if not config.paper_mode:
        raise NotImplementedError("Only the paper asset ledger is bundled")
    return AssetClient(token or InMemoryToken(symbol=config.symbol), account)
