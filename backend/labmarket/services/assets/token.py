"""Paper-mode fungible token kept entirely in memory."""

from __future__ import annotations

import logging
from typing import Callable

from .exceptions import (
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InvalidAmountError,
)
from .models import Allowance, TokenState

logger = logging.getLogger(__name__)

ReceiveHook = Callable[[str, str, int], None]


class InMemoryToken:
    """Balances and allowances for a single fungible asset.

    Receive hooks fire after an account is credited, which lets tests model
    token callbacks that call back into the ledger.
    """

    def __init__(self, symbol: str = "LAB", state: TokenState | None = None):
        self.symbol = symbol
        self._balances: dict[str, int] = {}
        self._allowances: dict[tuple[str, str], int] = {}
        self._receive_hooks: dict[str, list[ReceiveHook]] = {}

        if state is not None:
            self.symbol = state.symbol
            self._balances = dict(state.balances)
            self._allowances = {
                (a.owner, a.spender): a.amount for a in state.allowances
            }

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise InvalidAmountError(f"Invalid amount: {amount!r}")

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, account: str, amount: int) -> int:
        self._check_amount(amount)
        self._balances[account] = self.balance_of(account) + amount
        logger.debug(f"Minted {amount} {self.symbol} to {account}")
        return self._balances[account]

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        self._check_amount(amount)
        self._allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._check_amount(amount)
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{sender} holds {balance} {self.symbol}, needs {amount}",
                account=sender,
            )
        self._balances[sender] = balance - amount
        self._balances[to] = self.balance_of(to) + amount
        self._fire_receive_hooks(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        self._check_amount(amount)
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowanceError(
                f"{spender} approved for {allowed} {self.symbol} of {owner}, needs {amount}",
                account=owner,
            )
        balance = self.balance_of(owner)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{owner} holds {balance} {self.symbol}, needs {amount}",
                account=owner,
            )
        self._allowances[(owner, spender)] = allowed - amount
        self._balances[owner] = balance - amount
        self._balances[to] = self.balance_of(to) + amount
        self._fire_receive_hooks(owner, to, amount)
        return True

    def add_receive_hook(self, account: str, hook: ReceiveHook) -> None:
        self._receive_hooks.setdefault(account, []).append(hook)

    def _fire_receive_hooks(self, sender: str, to: str, amount: int) -> None:
        for hook in self._receive_hooks.get(to, []):
            hook(sender, to, amount)

    # Snapshots let the ledger roll back earlier transfers of a failed call.

    def snapshot(self) -> TokenState:
        return TokenState(
            symbol=self.symbol,
            balances=dict(self._balances),
            allowances=[
                Allowance(owner=owner, spender=spender, amount=amount)
                for (owner, spender), amount in self._allowances.items()
            ],
        )

    def restore(self, state: TokenState) -> None:
        self._balances = dict(state.balances)
        self._allowances = {(a.owner, a.spender): a.amount for a in state.allowances}
