"""
Staking engine.

Orchestrates deposits, reward issuance per epoch and redemptions:

- stake: base asset -> external pool, receipt balance minted into warmup.
- claim: vested warmup -> the staker's wallet.
- unstake: receipt balance -> cooldown, queued for the next batched request.
- send_withdrawal_requests: one request per external cycle for everything queued.
- claim_withdraw: matured cooldown -> base asset paid out, receipt burned.
- instant_unstake: receipt balance -> liquidity reserve, base asset paid now.

The external pool honours only one outstanding withdrawal request per account
per cycle, and a new request overwrites the previous one. The engine therefore
keeps its own queue of unrequested cooldown amounts and collects a matured
batch before issuing the next request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from ..errors import AlreadyInitialized, InsufficientBalance, NotInitialized, NotYetVested, OutOfRange, Paused, ZeroAmount
from ..state.chain import Address, Amount, Chain, Journaled, require_address, require_amount, transactional
from ..state.ledger import ElasticLedger
from ..state.tokens import TokenLedger
from .epoch import Epoch, add_rewards, advance, init_epoch, is_due
from .escrow import EscrowRecord, VestingEscrow
from .positions import StakerState, derive_states

if TYPE_CHECKING:
    from ..access import Capability
    from ..integration.yield_pool import ExternalYieldPool
    from .reserve import LiquidityReserve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StakingConfig:
    """Epoch clock and redemption parameters of a staking engine."""

    epoch_length: int = 100
    first_epoch_number: int = 1
    # None: one epoch length after the block the engine is created at.
    first_epoch_block: Optional[int] = None
    warmup_period: int = 0
    # None: withdrawal requests may be sent at any point of a cycle.
    request_window_blocks: Optional[int] = None

    def __post_init__(self) -> None:
        for name, v in (
            ("epoch_length", self.epoch_length),
            ("first_epoch_number", self.first_epoch_number),
            ("warmup_period", self.warmup_period),
        ):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.epoch_length == 0:
            raise ValueError("epoch_length must be positive")
        for name, opt in (
            ("first_epoch_block", self.first_epoch_block),
            ("request_window_blocks", self.request_window_blocks),
        ):
            if opt is None:
                continue
            if not isinstance(opt, int) or isinstance(opt, bool):
                raise TypeError(f"{name} must be an int or None")
            if opt < 0:
                raise ValueError(f"{name} must be non-negative: {opt}")


@dataclass(frozen=True)
class PendingExternalWithdrawal:
    """The engine's outstanding request at the external pool."""

    requested_amount: Amount = 0
    cycle_index_at_request: Optional[int] = None


class StakingEngine(Journaled):
    _journal_fields = (
        "_epoch",
        "_warmup_period",
        "_request_window_blocks",
        "_staking_paused",
        "_unstaking_paused",
        "_withdrawals_paused",
        "_queued",
        "_requested",
        "_pending",
        "_withdrawal_float",
    )

    def __init__(
        self,
        chain: Chain,
        owner: "Capability",
        token: TokenLedger,
        ledger: ElasticLedger,
        pool: "ExternalYieldPool",
        config: StakingConfig = StakingConfig(),
        *,
        address: Address = "contract:staking",
    ) -> None:
        self.chain = chain
        self.owner = owner
        self.token = token
        self.ledger = ledger
        self.pool = pool
        self.address = require_address(address)

        first_block = config.first_epoch_block
        if first_block is None:
            first_block = chain.block_number + config.epoch_length
        self._epoch: Epoch = init_epoch(config.first_epoch_number, config.epoch_length, first_block)
        self._warmup_period = config.warmup_period
        self._request_window_blocks = config.request_window_blocks
        self._staking_paused = False
        self._unstaking_paused = False
        self._withdrawals_paused = False
        # user -> cooldown amount not yet part of a pool request
        self._queued: Dict[Address, Amount] = {}
        # user -> pool cycle index their cooldown amount was requested at
        self._requested: Dict[Address, int] = {}
        self._pending = PendingExternalWithdrawal()
        # base asset collected from the pool and not yet paid out
        self._withdrawal_float: Amount = 0

        self.warmup: Optional[VestingEscrow] = None
        self.cooldown: Optional[VestingEscrow] = None
        self.reserve: Optional["LiquidityReserve"] = None
        chain.register(self)

    # -- wiring --------------------------------------------------------------

    @transactional
    def wire(
        self,
        caller: Address,
        warmup: VestingEscrow,
        cooldown: VestingEscrow,
        reserve: "LiquidityReserve",
    ) -> None:
        """Set the references to the escrows and the reserve. Callable once."""
        self.owner.require(caller)
        if self.warmup is not None:
            raise AlreadyInitialized("staking engine is already wired")
        if warmup is cooldown:
            raise ValueError("warmup and cooldown must be distinct escrows")
        for escrow in (warmup, cooldown):
            if escrow.engine != self.address:
                raise NotInitialized(f"{escrow.name} escrow is not bound to {self.address}")
            if escrow.ledger is not self.ledger:
                raise ValueError(f"{escrow.name} escrow holds a different ledger")
        if self.ledger.engine != self.address:
            raise NotInitialized(f"{self.ledger.symbol} is not bound to {self.address}")
        self.warmup = warmup
        self.cooldown = cooldown
        self.reserve = reserve
        logger.info("staking engine wired: warmup=%s cooldown=%s reserve=%s", warmup.address, cooldown.address, reserve.address)

    def _require_wired(self) -> Tuple[VestingEscrow, VestingEscrow, "LiquidityReserve"]:
        if self.warmup is None or self.cooldown is None or self.reserve is None:
            raise NotInitialized("staking engine is not wired")
        return self.warmup, self.cooldown, self.reserve

    # -- staking -------------------------------------------------------------

    @transactional
    def stake(self, sender: Address, amount: Amount, recipient: Optional[Address] = None) -> EscrowRecord:
        """Deposit base asset and credit an equal receipt balance to `recipient`'s warmup."""
        warmup, _cooldown, _reserve = self._require_wired()
        if self._staking_paused:
            raise Paused("staking is disabled")
        if require_amount(amount) == 0:
            raise ZeroAmount("stake amount must be positive")
        recipient = require_address(recipient if recipient is not None else sender, name="recipient")

        self._rebase()
        self.token.transfer_from(self.address, sender, self.address, amount)
        self._deposit_to_pool(amount)
        self.ledger.mint(self.address, self.address, amount)
        self.ledger.approve(self.address, warmup.address, amount)
        record = warmup.deposit(self.address, recipient, amount, self._epoch.number + self._warmup_period)
        logger.debug("stake %d by %s for %s (warm until epoch %d)", amount, sender, recipient, record.release_epoch)
        return record

    @transactional
    def claim(self, sender: Address, beneficiary: Address) -> Amount:
        """Move the beneficiary's vested warmup to their wallet. Returns 0 if nothing is vested."""
        warmup, _cooldown, _reserve = self._require_wired()
        require_address(beneficiary, name="beneficiary")
        if not warmup.is_vested(beneficiary):
            return 0
        value = warmup.value_of(beneficiary)
        if value == 0:
            return 0
        warmup.retrieve(self.address, beneficiary, value)
        logger.debug("claim %d for %s (by %s)", value, beneficiary, sender)
        return value

    # -- redemption ----------------------------------------------------------

    @transactional
    def unstake(
        self,
        sender: Address,
        amount: Amount,
        use_warmup_funds: bool = True,
        trigger_rebase: bool = False,
    ) -> EscrowRecord:
        """
        Move `amount` of receipt balance into cooldown for the next pool cycle.

        The balance is taken from the sender's wallet first (the engine must be
        approved for it) and, with `use_warmup_funds`, from their warmup record.
        """
        _warmup, cooldown, _reserve = self._require_wired()
        if self._unstaking_paused:
            raise Paused("unstaking is disabled")
        if require_amount(amount) == 0:
            raise ZeroAmount("unstake amount must be positive")
        if trigger_rebase:
            self._rebase()

        self._pull_receipts(sender, amount, use_warmup_funds)
        release_cycle = self.pool.current_cycle_index() + 1
        self._queued[sender] = self._queued.get(sender, 0) + amount
        self.ledger.approve(self.address, cooldown.address, amount)
        record = cooldown.deposit(self.address, sender, amount, release_cycle)
        logger.debug("unstake %d by %s queued (cooldown total %d)", amount, sender, record.amount)
        return record

    @transactional
    def instant_unstake(self, sender: Address, amount: Amount, use_warmup_funds: bool = True) -> Amount:
        """Redeem `amount` of receipt balance through the liquidity reserve. Returns the payout."""
        _warmup, _cooldown, reserve = self._require_wired()
        if self._unstaking_paused:
            raise Paused("unstaking is disabled")
        if require_amount(amount) == 0:
            raise ZeroAmount("instant unstake amount must be positive")

        self._pull_receipts(sender, amount, use_warmup_funds)
        self.ledger.transfer(self.address, reserve.address, amount)
        return reserve.instant_unstake(self.address, amount, sender)

    @transactional
    def send_withdrawal_requests(self, sender: Address) -> Amount:
        """
        Issue one pool withdrawal request for all queued cooldown amounts.

        Fires at most once per pool cycle (and, with a request window, only in
        the last `request_window_blocks` blocks of the cycle). Returns the
        requested amount, or 0 when nothing was sent.
        """
        self._require_wired()
        if self._withdrawals_paused:
            raise Paused("withdrawal requests are disabled")
        self._rebase()
        return self._send_requests(sender)

    @transactional
    def claim_withdraw(self, sender: Address, recipient: Address) -> Amount:
        """
        Pay out `recipient`'s matured cooldown in base asset.

        Returns 0 when the recipient has nothing in cooldown. Raises
        `NotYetVested` while the amount is still queued or the pool has not
        rolled past the cycle it was requested in.
        """
        _warmup, cooldown, _reserve = self._require_wired()
        require_address(recipient, name="recipient")
        record = cooldown.record_of(recipient)
        if record is None:
            return 0
        if recipient in self._queued:
            raise NotYetVested(f"withdrawal for {recipient} has not been requested yet")
        cycle = self.pool.current_cycle_index()
        requested_at = self._requested.get(recipient)
        if requested_at is None or cycle <= requested_at:
            raise NotYetVested(f"withdrawal for {recipient} matures after cycle {requested_at}, now {cycle}")

        self._collect_matured(cycle)
        nominal = record.amount
        value = cooldown.value_of(recipient)
        if self._withdrawal_float < nominal:
            raise InsufficientBalance(f"withdrawal float {self._withdrawal_float} < {nominal}")

        del self._requested[recipient]
        self._withdrawal_float -= nominal
        growth = value - nominal
        if growth > 0:
            self._epoch = add_rewards(self._epoch, growth)
        if value > 0:
            cooldown.reclaim(self.address, recipient, value)
            self.ledger.burn(self.address, self.address, value)
            self.ledger.burn_dust(self.address, self.address)
        if nominal > 0:
            self.token.transfer(self.address, recipient, nominal)
        logger.debug("claim_withdraw %d to %s (by %s, recycled %d)", nominal, recipient, sender, max(growth, 0))
        return nominal

    # -- rewards -------------------------------------------------------------

    @transactional
    def rebase(self) -> bool:
        """Process the current epoch if its end block has been reached."""
        return self._rebase()

    @transactional
    def add_rewards_for_stakers(self, sender: Address, amount: Amount, trigger_rebase: bool = False) -> Epoch:
        """Fund the epoch after the current one with `amount` of base asset."""
        self.owner.require(sender)
        if require_amount(amount) == 0:
            raise ZeroAmount("reward amount must be positive")
        self.token.transfer_from(self.address, sender, self.address, amount)
        self._deposit_to_pool(amount)
        self._epoch = add_rewards(self._epoch, amount)
        logger.info(
            "rewards +%d queued for epoch %d (pending %d)", amount, self._epoch.number + 1, self._epoch.pending_amount
        )
        if trigger_rebase:
            self._rebase()
        return self._epoch

    # -- administration ------------------------------------------------------

    @transactional
    def override_staking(self, caller: Address, paused: bool) -> None:
        self.owner.require(caller)
        self._staking_paused = bool(paused)
        logger.info("staking paused=%s", self._staking_paused)

    @transactional
    def override_unstaking(self, caller: Address, paused: bool) -> None:
        self.owner.require(caller)
        self._unstaking_paused = bool(paused)
        logger.info("unstaking paused=%s", self._unstaking_paused)

    @transactional
    def override_withdrawals(self, caller: Address, paused: bool) -> None:
        self.owner.require(caller)
        self._withdrawals_paused = bool(paused)
        logger.info("withdrawal requests paused=%s", self._withdrawals_paused)

    @transactional
    def set_warmup_period(self, caller: Address, epochs: int) -> None:
        self.owner.require(caller)
        if not isinstance(epochs, int) or isinstance(epochs, bool) or epochs < 0:
            raise OutOfRange(f"warmup period must be a non-negative int: {epochs!r}")
        self._warmup_period = epochs
        logger.info("warmup period set to %d epochs", epochs)

    @transactional
    def set_request_window(self, caller: Address, blocks: Optional[int]) -> None:
        self.owner.require(caller)
        if blocks is not None and (not isinstance(blocks, int) or isinstance(blocks, bool) or blocks < 0):
            raise OutOfRange(f"request window must be None or a non-negative int: {blocks!r}")
        self._request_window_blocks = blocks
        logger.info("request window set to %s blocks", blocks)

    # -- queries -------------------------------------------------------------

    @property
    def epoch(self) -> Epoch:
        return self._epoch

    @property
    def warmup_period(self) -> int:
        return self._warmup_period

    @property
    def request_window_blocks(self) -> Optional[int]:
        return self._request_window_blocks

    @property
    def staking_paused(self) -> bool:
        return self._staking_paused

    @property
    def unstaking_paused(self) -> bool:
        return self._unstaking_paused

    @property
    def withdrawals_paused(self) -> bool:
        return self._withdrawals_paused

    @property
    def pending_withdrawal(self) -> PendingExternalWithdrawal:
        return self._pending

    @property
    def withdrawal_float(self) -> Amount:
        return self._withdrawal_float

    def warmup_info(self, user: Address) -> Optional[EscrowRecord]:
        warmup, _cooldown, _reserve = self._require_wired()
        return warmup.record_of(user)

    def cooldown_info(self, user: Address) -> Optional[EscrowRecord]:
        _warmup, cooldown, _reserve = self._require_wired()
        return cooldown.record_of(user)

    def queued_withdrawal_amount(self, user: Optional[Address] = None) -> Amount:
        """Cooldown amount not yet part of a pool request (for one user, or in total)."""
        if user is None:
            return sum(self._queued.values())
        return self._queued.get(user, 0)

    def withdrawers(self) -> Tuple[Address, ...]:
        """Users with a queued or in-flight withdrawal."""
        return tuple(sorted(set(self._queued) | set(self._requested)))

    def requested_cycle(self, user: Address) -> Optional[int]:
        return self._requested.get(user)

    def is_withdrawable(self, user: Address) -> bool:
        _warmup, cooldown, _reserve = self._require_wired()
        if user in self._queued or user not in self._requested:
            return False
        return cooldown.record_of(user) is not None and self.pool.current_cycle_index() > self._requested[user]

    def staker_states(self, user: Address) -> Tuple[StakerState, ...]:
        warmup, cooldown, _reserve = self._require_wired()
        return derive_states(
            wallet_balance=self.ledger.balance_of(user),
            warmup=warmup.record_of(user),
            warmup_value=warmup.value_of(user),
            cooldown=cooldown.record_of(user),
            cooldown_withdrawable=self.is_withdrawable(user),
        )

    # -- internals -----------------------------------------------------------

    def _rebase(self) -> bool:
        epoch = self._epoch
        if not is_due(epoch, self.chain.block_number):
            return False
        if self.ledger.total_supply == 0:
            self._epoch = advance(epoch, carry=epoch.distribute_amount)
            logger.info("epoch %d closed with no stakers; %d carried", epoch.number, epoch.distribute_amount)
            return True
        self.ledger.rebase(self.address, epoch.distribute_amount, epoch.number)
        self._epoch = advance(epoch)
        logger.info(
            "epoch %d closed: distributed %d, next distributes %d and ends at block %d",
            epoch.number,
            epoch.distribute_amount,
            self._epoch.distribute_amount,
            self._epoch.end_block,
        )
        return True

    def _deposit_to_pool(self, amount: Amount) -> None:
        self.token.approve(self.address, self.pool.address, amount)
        self.pool.deposit(self.address, amount)

    def _pull_receipts(self, sender: Address, amount: Amount, use_warmup_funds: bool) -> None:
        warmup, _cooldown, _reserve = self._require_wired()
        wallet = self.ledger.balance_of(sender)
        warming = warmup.value_of(sender) if use_warmup_funds else 0
        if wallet + warming < amount:
            raise InsufficientBalance(
                f"not enough receipt balance: {sender} holds {wallet} + {warming} in warmup < {amount}"
            )
        from_wallet = min(wallet, amount)
        if from_wallet:
            self.ledger.transfer_from(self.address, sender, self.address, from_wallet)
        if amount - from_wallet:
            warmup.reclaim(self.address, sender, amount - from_wallet)
            self.ledger.burn_dust(self.address, self.address)

    def _in_request_window(self) -> bool:
        window = self._request_window_blocks
        if window is None:
            return True
        cycle_end = self.pool.current_cycle_start() + self.pool.cycle_duration()
        return self.chain.block_number + window >= cycle_end

    def _collect_matured(self, cycle: int) -> Amount:
        pending = self._pending
        if pending.requested_amount == 0 or pending.cycle_index_at_request is None:
            return 0
        if cycle <= pending.cycle_index_at_request:
            return 0
        collected = self.pool.claim_withdrawal(self.address, self.address)
        self._withdrawal_float += collected
        self._pending = replace(pending, requested_amount=0)
        logger.info("collected %d from pool for cycle %d", collected, pending.cycle_index_at_request)
        return collected

    def _send_requests(self, sender: Address) -> Amount:
        _warmup, cooldown, _reserve = self._require_wired()
        cycle = self.pool.current_cycle_index()
        if cycle == self._pending.cycle_index_at_request:
            return 0
        if not self._in_request_window():
            return 0
        total = sum(self._queued.values())
        if total == 0:
            return 0

        self._collect_matured(cycle)
        users = sorted(self._queued)
        for user in users:
            self._requested[user] = cycle
        self._queued = {}
        self._pending = PendingExternalWithdrawal(requested_amount=total, cycle_index_at_request=cycle)
        for user in users:
            cooldown.reschedule(self.address, user, cycle + 1)
        self.pool.request_withdrawal(self.address, total)
        logger.info("withdrawal request of %d sent for cycle %d (%d users, by %s)", total, cycle, len(users), sender)
        return total

    def __repr__(self) -> str:
        return f"StakingEngine(epoch={self._epoch.number}, supply={self.ledger.total_supply})"
