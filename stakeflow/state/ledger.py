"""
Elastic-supply receipt ledger.

Balances are never stored directly. Each account holds `shares`, a
high-precision internal unit, and its visible balance is

    balance = shares // shares_per_unit

A rebase raises `total_supply` by the distributed profit and recomputes
`shares_per_unit = total_shares // total_supply` from the totals (no
compounding of earlier rounding), which credits every holder pro rata in O(1).

Rounding is always against the holder: visible balances are floored, and
`shares_per_unit` only ever moves down, so

    sum(balance_i) <= total_supply        and        index() is non-decreasing.

Mints, burns and transfers move exactly `amount * shares_per_unit` shares, so
they never disturb other holders' balances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from ..errors import AlreadyInitialized, InsufficientBalance, NotInitialized, NotPoolCaller, ZeroAmount
from .chain import Address, Amount, Chain, Journaled, require_address, require_amount, transactional
from .tokens import ReceiveHookToken

if TYPE_CHECKING:
    from ..access import Capability

logger = logging.getLogger(__name__)

# Shares minted per visible unit before any rebase. Large enough that floor
# rounding of `shares_per_unit` never moves a balance for supplies below ~1e20.
INITIAL_SHARES_PER_UNIT = 10**40

# `index()` of one initial unit before any rebase.
INDEX_SCALE = 10**18


@dataclass(frozen=True)
class RebaseRecord:
    """One applied rebase (kept in `ElasticLedger.rebases`)."""

    epoch: int
    profit: Amount
    total_supply_before: Amount
    total_supply_after: Amount
    index: int
    block: int

    @property
    def rebase_bps(self) -> int:
        if self.total_supply_before == 0:
            return 0
        return (self.profit * 10_000) // self.total_supply_before


class ElasticLedger(Journaled, ReceiveHookToken):
    """
    Rebasing receipt token.

    Mint, burn and rebase are reserved for the staking engine bound by
    `initialize`; transfers and allowances follow the usual token surface.
    """

    _journal_fields = (
        "_shares",
        "_allowances",
        "_total_supply",
        "_total_shares",
        "_shares_per_unit",
        "_rebases",
        "_engine",
    )

    def __init__(
        self,
        chain: Chain,
        owner: "Capability",
        symbol: str = "sTKN",
        address: Optional[Address] = None,
    ) -> None:
        ReceiveHookToken.__init__(self)
        self.chain = chain
        self.owner = owner
        self.symbol = symbol
        self.address = address or f"token:{symbol}"
        self._shares: Dict[Address, int] = {}
        self._allowances: Dict[Tuple[Address, Address], Amount] = {}
        self._total_supply: Amount = 0
        self._total_shares: int = 0
        self._shares_per_unit: int = INITIAL_SHARES_PER_UNIT
        self._rebases: List[RebaseRecord] = []
        self._engine: Optional[Address] = None
        chain.register(self)

    # -- wiring --------------------------------------------------------------

    @transactional
    def initialize(self, caller: Address, engine: Address) -> None:
        """Bind the staking engine as the only minter / burner / rebaser."""
        self.owner.require(caller)
        if self._engine is not None:
            raise AlreadyInitialized(f"{self.symbol} is already bound to {self._engine}")
        self._engine = require_address(engine, name="engine")
        logger.info("%s bound to staking engine %s", self.symbol, engine)

    @property
    def engine(self) -> Optional[Address]:
        return self._engine

    def _require_engine(self, caller: Address) -> None:
        if self._engine is None:
            raise NotInitialized(f"{self.symbol} has no staking engine bound")
        if caller != self._engine:
            raise NotPoolCaller(f"{self.symbol}: only {self._engine} may call this, not {caller}")

    # -- queries -------------------------------------------------------------

    @property
    def total_supply(self) -> Amount:
        return self._total_supply

    @property
    def total_shares(self) -> int:
        return self._total_shares

    @property
    def shares_per_unit(self) -> int:
        return self._shares_per_unit

    @property
    def rebases(self) -> Tuple[RebaseRecord, ...]:
        return tuple(self._rebases)

    def index(self) -> int:
        """Current value of one initial unit, scaled by INDEX_SCALE."""
        return (INDEX_SCALE * INITIAL_SHARES_PER_UNIT) // self._shares_per_unit

    def holders(self) -> Tuple[Address, ...]:
        return tuple(sorted(self._shares))

    def shares_of(self, account: Address) -> int:
        return self._shares.get(account, 0)

    def balance_of(self, account: Address) -> Amount:
        return self.balance_for_shares(self.shares_of(account))

    def balance_for_shares(self, shares: int) -> Amount:
        return shares // self._shares_per_unit

    def shares_for_balance(self, amount: Amount) -> int:
        return amount * self._shares_per_unit

    def allowance(self, owner: Address, spender: Address) -> Amount:
        return self._allowances.get((owner, spender), 0)

    def get_all_balances(self) -> Dict[Address, Amount]:
        return {a: self.balance_for_shares(s) for a, s in self._shares.items() if s >= self._shares_per_unit}

    # -- engine-only ---------------------------------------------------------

    @transactional
    def mint(self, caller: Address, account: Address, amount: Amount) -> None:
        self._require_engine(caller)
        require_address(account, name="account")
        if require_amount(amount) == 0:
            raise ZeroAmount("mint amount must be positive")
        shares = self.shares_for_balance(amount)
        self._shares[account] = self.shares_of(account) + shares
        self._total_shares += shares
        self._total_supply += amount
        logger.debug("%s mint %d to %s", self.symbol, amount, account)

    @transactional
    def burn(self, caller: Address, account: Address, amount: Amount) -> None:
        self._require_engine(caller)
        require_amount(amount)
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalance(f"{self.symbol}: balance {balance} < burn {amount} for {account}")
        shares = self.shares_for_balance(amount)
        self._set_shares(account, self.shares_of(account) - shares)
        self._total_shares -= shares
        self._total_supply -= amount
        logger.debug("%s burn %d from %s", self.symbol, amount, account)

    @transactional
    def burn_dust(self, caller: Address, account: Address) -> int:
        """
        Drop the shares `account` holds below one unit of balance.

        Supply is unchanged; the next rebase spreads the value over all
        holders. Returns the number of shares removed.
        """
        self._require_engine(caller)
        dust = self.shares_of(account) % self._shares_per_unit
        if dust:
            self._set_shares(account, self.shares_of(account) - dust)
            self._total_shares -= dust
            logger.debug("%s burn %d dust shares from %s", self.symbol, dust, account)
        return dust

    @transactional
    def rebase(self, caller: Address, profit: Amount, epoch: int) -> Amount:
        """
        Distribute `profit` to all holders pro rata. Returns the new total supply.

        A ledger with zero supply has nobody to credit, so the call is a no-op.
        """
        self._require_engine(caller)
        require_amount(profit, name="profit")
        supply_before = self._total_supply
        if supply_before == 0:
            logger.info("%s rebase skipped for epoch %d: zero supply", self.symbol, epoch)
            return 0
        if profit == 0:
            logger.info("%s rebase epoch %d: no profit, index %d", self.symbol, epoch, self.index())
            return supply_before

        supply_after = supply_before + profit
        self._shares_per_unit = max(1, min(self._shares_per_unit, self._total_shares // supply_after))
        self._total_supply = supply_after

        record = RebaseRecord(
            epoch=epoch,
            profit=profit,
            total_supply_before=supply_before,
            total_supply_after=supply_after,
            index=self.index(),
            block=self.chain.block_number,
        )
        self._rebases.append(record)
        logger.info(
            "%s rebase epoch %d: +%d (%d bps), supply %d -> %d, index %d",
            self.symbol,
            epoch,
            profit,
            record.rebase_bps,
            supply_before,
            supply_after,
            record.index,
        )
        return supply_after

    # -- token surface -------------------------------------------------------

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
        if current - amount == 0:
            self._allowances.pop((owner, spender), None)
        else:
            self._allowances[(owner, spender)] = current - amount
        self._transfer(owner, to, amount)

    @transactional
    def transfer_shares(self, sender: Address, to: Address, shares: int) -> Amount:
        """
        Move raw `shares` rather than a balance amount, so sub-unit dust can
        leave an account together with the balance it belongs to. Returns the
        balance those shares are worth.
        """
        require_address(to, name="recipient")
        require_amount(shares, name="shares")
        held = self.shares_of(sender)
        if held < shares:
            raise InsufficientBalance(f"{self.symbol}: {sender} holds {held} shares < {shares}")
        amount = self.balance_for_shares(shares)
        self._set_shares(sender, held - shares)
        self._shares[to] = self.shares_of(to) + shares
        logger.debug("%s transfer %s -> %s: %d shares (%d)", self.symbol, sender, to, shares, amount)
        self._notify_receiver(sender, to, amount)
        return amount

    def _transfer(self, sender: Address, to: Address, amount: Amount) -> None:
        require_address(to, name="recipient")
        require_amount(amount)
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(f"{self.symbol}: balance {balance} < {amount} for {sender}")
        shares = self.shares_for_balance(amount)
        self._set_shares(sender, self.shares_of(sender) - shares)
        self._shares[to] = self.shares_of(to) + shares
        logger.debug("%s transfer %s -> %s: %d", self.symbol, sender, to, amount)
        self._notify_receiver(sender, to, amount)

    def _set_shares(self, account: Address, shares: int) -> None:
        if shares < 0:
            raise ValueError(f"shares cannot be negative: {shares}")
        if shares == 0:
            self._shares.pop(account, None)
        else:
            self._shares[account] = shares

    def __repr__(self) -> str:
        return f"ElasticLedger({self.symbol}, supply={self._total_supply}, holders={len(self._shares)})"
