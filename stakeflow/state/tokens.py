"""
Fungible token ledger for the base asset.

Implements the standard surface the protocol assumes of any deposited asset:
balance_of / transfer / transfer_from / approve.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple

from ..errors import InsufficientBalance, ZeroAmount
from .chain import Address, Amount, Chain, Journaled, require_address, require_amount, transactional

logger = logging.getLogger(__name__)

# hook(token, sender, amount) runs after `amount` has been credited to the hooked account.
ReceiveHook = Callable[["ReceiveHookToken", Address, Amount], None]


class ReceiveHookToken:
    """
    Per-account receive hooks, shared by both token kinds.

    A hook models a caller-controlled address: it runs after the credit, inside
    the same transaction, and may call back into any component.
    """

    def __init__(self) -> None:
        self._receive_hooks: Dict[Address, ReceiveHook] = {}

    def set_receive_hook(self, account: Address, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self._receive_hooks.pop(account, None)
        else:
            self._receive_hooks[account] = hook

    def _notify_receiver(self, sender: Address, to: Address, amount: Amount) -> None:
        hook = self._receive_hooks.get(to)
        if hook is not None:
            hook(self, sender, amount)


class TokenLedger(Journaled, ReceiveHookToken):
    """
    Balance + allowance table for a plain (non-rebasing) token.

    Zero balances and allowances are removed to keep the tables sparse.
    """

    _journal_fields = ("_balances", "_allowances", "_total_supply")

    def __init__(self, chain: Chain, symbol: str, address: Optional[Address] = None) -> None:
        ReceiveHookToken.__init__(self)
        self.chain = chain
        self.symbol = symbol
        self.address = address or f"token:{symbol}"
        self._balances: Dict[Address, Amount] = {}
        self._allowances: Dict[Tuple[Address, Address], Amount] = {}
        self._total_supply = 0
        chain.register(self)

    # -- queries -------------------------------------------------------------

    def balance_of(self, account: Address) -> Amount:
        return self._balances.get(account, 0)

    def allowance(self, owner: Address, spender: Address) -> Amount:
        return self._allowances.get((owner, spender), 0)

    @property
    def total_supply(self) -> Amount:
        return self._total_supply

    def get_all_balances(self) -> Dict[Address, Amount]:
        return dict(self._balances)

    # -- mutations -----------------------------------------------------------

    @transactional
    def mint(self, account: Address, amount: Amount) -> None:
        """Credit new units to `account` (used to fund simulated accounts)."""
        require_address(account, name="account")
        if require_amount(amount) == 0:
            raise ZeroAmount("mint amount must be positive")
        self._set_balance(account, self.balance_of(account) + amount)
        self._total_supply += amount

    @transactional
    def approve(self, owner: Address, spender: Address, amount: Amount) -> None:
        require_address(spender, name="spender")
        require_amount(amount)
        if amount == 0:
            self._allowances.pop((owner, spender), None)
        else:
            self._allowances[(owner, spender)] = amount

    @transactional
    def transfer(self, sender: Address, to: Address, amount: Amount) -> None:
        self._transfer(sender, to, amount)

    @transactional
    def transfer_from(self, spender: Address, owner: Address, to: Address, amount: Amount) -> None:
        current = self.allowance(owner, spender)
        if current < amount:
            raise InsufficientBalance(
                f"{self.symbol}: allowance {current} < {amount} for {spender} on {owner}"
            )
        new_allowance = current - amount
        if new_allowance == 0:
            self._allowances.pop((owner, spender), None)
        else:
            self._allowances[(owner, spender)] = new_allowance
        self._transfer(owner, to, amount)

    def _transfer(self, sender: Address, to: Address, amount: Amount) -> None:
        require_address(to, name="recipient")
        require_amount(amount)
        current = self.balance_of(sender)
        if current < amount:
            raise InsufficientBalance(f"{self.symbol}: balance {current} < {amount} for {sender}")
        self._set_balance(sender, current - amount)
        self._set_balance(to, self.balance_of(to) + amount)
        logger.debug("%s transfer %s -> %s: %d", self.symbol, sender, to, amount)
        self._notify_receiver(sender, to, amount)

    def _set_balance(self, account: Address, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            self._balances.pop(account, None)
        else:
            self._balances[account] = amount

    def __repr__(self) -> str:
        return f"TokenLedger({self.symbol}, {len(self._balances)} holders)"
