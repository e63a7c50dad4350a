"""
Liquidity reserve: single-asset share pool and instant-unstake counterparty.

Providers deposit base asset for reserve shares. Stakers who want out without
waiting for the pool cycle sell their receipt balance to the reserve at a fee;
the reserve keeps the receipt balance (which still earns rebases) and later
redeems it through the engine's ordinary unstake path. The fee is the
providers' yield.

Share price is

    total_locked_value = liquid base float + receipt balance held + reserve cooldown
    value(shares)      = shares * total_locked_value // total_shares

Initialization seeds `minimum_liquidity` base asset as shares held by the
reserve itself, so the first provider enters at 1:1 and the share supply can
never be fully withdrawn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

from ..errors import (
    AlreadyInitialized,
    InsufficientBalance,
    InsufficientReserveFunds,
    NotInitialized,
    NotPoolCaller,
    OutOfRange,
    ZeroAmount,
)
from ..state.chain import Address, Amount, Chain, Journaled, require_address, require_amount, transactional
from ..state.ledger import ElasticLedger
from ..state.shares import ShareTable
from ..state.tokens import TokenLedger
from .fees import BPS_DENOM, MAX_FEE_BPS, quote_instant_unstake, validate_fee_bps

if TYPE_CHECKING:
    from ..access import Capability
    from .staking import StakingEngine

logger = logging.getLogger(__name__)

MINIMUM_LIQUIDITY = 10**15


@dataclass(frozen=True)
class ReserveConfig:
    fee_bps: int = 0
    max_fee_bps: int = MAX_FEE_BPS
    minimum_liquidity: int = MINIMUM_LIQUIDITY

    def __post_init__(self) -> None:
        for name, v in (
            ("fee_bps", self.fee_bps),
            ("max_fee_bps", self.max_fee_bps),
            ("minimum_liquidity", self.minimum_liquidity),
        ):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.max_fee_bps > BPS_DENOM:
            raise ValueError(f"max_fee_bps must be <= {BPS_DENOM}: {self.max_fee_bps}")
        validate_fee_bps(self.fee_bps, self.max_fee_bps)
        if self.minimum_liquidity == 0:
            raise ValueError("minimum_liquidity must be positive")


class LiquidityReserve(Journaled):
    _journal_fields = ("_shares", "_fee_bps", "_initialized")

    def __init__(
        self,
        chain: Chain,
        owner: "Capability",
        token: TokenLedger,
        config: ReserveConfig = ReserveConfig(),
        *,
        address: Address = "contract:reserve",
    ) -> None:
        self.chain = chain
        self.owner = owner
        self.token = token
        self.address = require_address(address)
        self.max_fee_bps = config.max_fee_bps
        self.minimum_liquidity = config.minimum_liquidity
        self._fee_bps = config.fee_bps
        self._shares = ShareTable()
        self._initialized = False
        self.engine: Optional["StakingEngine"] = None
        self.ledger: Optional[ElasticLedger] = None
        chain.register(self)

    # -- wiring --------------------------------------------------------------

    @transactional
    def initialize(self, caller: Address, engine: "StakingEngine", ledger: ElasticLedger) -> None:
        """Bind the engine and receipt ledger, and seed the minimum liquidity from `caller`."""
        self.owner.require(caller)
        if self._initialized:
            raise AlreadyInitialized("liquidity reserve is already initialized")
        if engine.ledger is not ledger:
            raise ValueError("engine and reserve must share the receipt ledger")
        funds = min(self.token.balance_of(caller), self.token.allowance(caller, self.address))
        if funds < self.minimum_liquidity:
            raise InsufficientBalance(
                f"seeding needs {self.minimum_liquidity}, {caller} holds or approved only {funds}"
            )

        self.engine = engine
        self.ledger = ledger
        self._initialized = True
        self._shares.mint(self.address, self.minimum_liquidity)
        self.token.transfer_from(self.address, caller, self.address, self.minimum_liquidity)
        logger.info("liquidity reserve seeded with %d by %s", self.minimum_liquidity, caller)

    def _require_initialized(self) -> tuple["StakingEngine", ElasticLedger]:
        if not self._initialized or self.engine is None or self.ledger is None:
            raise NotInitialized("liquidity reserve is not initialized")
        return self.engine, self.ledger

    # -- queries -------------------------------------------------------------

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def total_shares(self) -> Amount:
        return self._shares.total

    def get_all_balances(self) -> Dict[Address, Amount]:
        return self._shares.get_all_balances()

    def balance_of(self, holder: Address) -> Amount:
        """Reserve shares held by `holder`."""
        return self._shares.get(holder)

    def liquid_float(self) -> Amount:
        return self.token.balance_of(self.address)

    def receipt_balance(self) -> Amount:
        if self.ledger is None:
            return 0
        return self.ledger.balance_of(self.address)

    def cooldown_amount(self) -> Amount:
        if self.engine is None or self.engine.cooldown is None:
            return 0
        record = self.engine.cooldown.record_of(self.address)
        return record.amount if record is not None else 0

    def total_locked_value(self) -> Amount:
        return self.liquid_float() + self.receipt_balance() + self.cooldown_amount()

    def value_of(self, share_amount: Amount) -> Amount:
        """Base asset redeemable for `share_amount` shares at the current price."""
        total = self._shares.total
        if total == 0:
            return 0
        return share_amount * self.total_locked_value() // total

    def shares_for(self, amount: Amount) -> Amount:
        """Shares minted for depositing `amount` at the current price."""
        total = self._shares.total
        locked = self.total_locked_value()
        if total == 0 or locked == 0:
            return amount
        return amount * total // locked

    # -- providers -----------------------------------------------------------

    @transactional
    def add_liquidity(self, sender: Address, amount: Amount) -> Amount:
        """Deposit base asset; returns the shares minted."""
        self._require_initialized()
        if require_amount(amount) == 0:
            raise ZeroAmount("liquidity amount must be positive")
        shares = self.shares_for(amount)
        if shares == 0:
            raise ZeroAmount(f"deposit of {amount} is worth no reserve shares")
        self._shares.mint(sender, shares)
        self.token.transfer_from(self.address, sender, self.address, amount)
        logger.debug("add_liquidity %d by %s -> %d shares", amount, sender, shares)
        return shares

    @transactional
    def remove_liquidity(self, sender: Address, share_amount: Amount) -> Amount:
        """Burn `share_amount` shares for base asset; the liquid float must cover the payout."""
        self._require_initialized()
        if require_amount(share_amount) == 0:
            raise ZeroAmount("share amount must be positive")
        held = self._shares.get(sender)
        if held < share_amount:
            raise InsufficientBalance(f"not enough reserve shares: {sender} holds {held} < {share_amount}")
        payout = self.value_of(share_amount)
        float_ = self.liquid_float()
        if payout > float_:
            raise InsufficientReserveFunds(f"not enough funds: payout {payout} > liquid float {float_}")

        self._shares.burn(sender, share_amount)
        self.token.transfer(self.address, sender, payout)
        logger.debug("remove_liquidity %d shares by %s -> %d", share_amount, sender, payout)
        return payout

    # -- engine-only ---------------------------------------------------------

    @transactional
    def instant_unstake(self, caller: Address, amount: Amount, recipient: Address) -> Amount:
        """Pay `recipient` the fee-adjusted value of `amount` already handed over by the engine."""
        engine, _ledger = self._require_initialized()
        if caller != engine.address:
            raise NotPoolCaller(f"instant_unstake is reserved for {engine.address}, not {caller}")
        require_address(recipient, name="recipient")
        if require_amount(amount) == 0:
            raise ZeroAmount("instant unstake amount must be positive")
        quote = quote_instant_unstake(amount, self._fee_bps)
        float_ = self.liquid_float()
        if quote.payout > float_:
            raise InsufficientReserveFunds(f"not enough funds: payout {quote.payout} > liquid float {float_}")

        self.token.transfer(self.address, recipient, quote.payout)
        logger.debug("instant_unstake %d for %s: paid %d, fee %d", amount, recipient, quote.payout, quote.fee)
        return quote.payout

    # -- administration ------------------------------------------------------

    @transactional
    def unstake_all_reward_tokens(self, caller: Address) -> Amount:
        """
        Send the reserve's whole receipt balance through the engine's unstake.

        A matured reserve cooldown is claimed back into the float first.
        Returns the amount put into cooldown.
        """
        self.owner.require(caller)
        engine, ledger = self._require_initialized()
        if engine.is_withdrawable(self.address):
            engine.claim_withdraw(self.address, self.address)
        balance = ledger.balance_of(self.address)
        if balance == 0:
            return 0
        ledger.approve(self.address, engine.address, balance)
        engine.unstake(self.address, balance, use_warmup_funds=False)
        logger.info("reserve unstaked %d receipt balance", balance)
        return balance

    @transactional
    def set_fee(self, caller: Address, fee_bps: int) -> None:
        self.owner.require(caller)
        try:
            validate_fee_bps(fee_bps, self.max_fee_bps)
        except (TypeError, ValueError) as exc:
            raise OutOfRange(str(exc)) from exc
        logger.info("reserve fee %d -> %d bps", self._fee_bps, fee_bps)
        self._fee_bps = fee_bps

    def __repr__(self) -> str:
        return f"LiquidityReserve(shares={self._shares.total}, float={self.liquid_float()}, fee={self._fee_bps}bps)"
