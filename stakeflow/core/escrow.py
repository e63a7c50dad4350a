"""
Vesting escrow for receipt balances.

One escrow instance is used for warmup (clocked by the engine's epoch number)
and one for cooldown (clocked by the external pool's cycle index). Custody is
held as ledger shares, so escrowed balances keep earning rebases.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from ..errors import AlreadyInitialized, InsufficientBalance, NotInitialized, NotPoolCaller, NotYetVested, ZeroAmount
from ..state.chain import Address, Amount, Chain, Journaled, require_address, require_amount, transactional
from ..state.ledger import ElasticLedger

if TYPE_CHECKING:
    from ..access import Capability

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


@dataclass(frozen=True)
class EscrowRecord:
    """Live custody record of one beneficiary."""

    amount: Amount
    shares: int
    release_epoch: int

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("amount must be non-negative")
        if self.shares < 0:
            raise ValueError("shares must be non-negative")
        if self.release_epoch < 0:
            raise ValueError("release_epoch must be non-negative")


class VestingEscrow(Journaled):
    _journal_fields = ("_records", "_engine")

    def __init__(
        self,
        chain: Chain,
        owner: "Capability",
        ledger: ElasticLedger,
        *,
        name: str = "escrow",
        address: Optional[Address] = None,
    ) -> None:
        self.chain = chain
        self.owner = owner
        self.ledger = ledger
        self.name = name
        self.address = address or f"contract:{name}"
        self._records: Dict[Address, EscrowRecord] = {}
        self._engine: Optional[Address] = None
        self._clock: Optional[Clock] = None
        chain.register(self)

    @transactional
    def initialize(self, caller: Address, engine: Address, clock: Clock) -> None:
        """Bind the engine allowed to move funds and the clock releases are measured on."""
        self.owner.require(caller)
        if self._engine is not None:
            raise AlreadyInitialized(f"{self.name} is already bound to {self._engine}")
        if not callable(clock):
            raise TypeError("clock must be callable")
        self._engine = require_address(engine, name="engine")
        self._clock = clock
        logger.info("%s escrow bound to %s", self.name, engine)

    @property
    def engine(self) -> Optional[Address]:
        return self._engine

    def _require_engine(self, caller: Address) -> None:
        if self._engine is None:
            raise NotInitialized(f"{self.name} has no engine bound")
        if caller != self._engine:
            raise NotPoolCaller(f"{self.name}: only {self._engine} may call this, not {caller}")

    # -- queries -------------------------------------------------------------

    def now(self) -> int:
        if self._clock is None:
            raise NotInitialized(f"{self.name} has no clock bound")
        return self._clock()

    def record_of(self, beneficiary: Address) -> Optional[EscrowRecord]:
        return self._records.get(beneficiary)

    def value_of(self, beneficiary: Address) -> Amount:
        """Current ledger value of the beneficiary's record (nominal amount plus rebases)."""
        record = self._records.get(beneficiary)
        if record is None:
            return 0
        return self.ledger.balance_for_shares(record.shares)

    def is_vested(self, beneficiary: Address) -> bool:
        record = self._records.get(beneficiary)
        return record is not None and self.now() >= record.release_epoch

    def beneficiaries(self) -> Tuple[Address, ...]:
        return tuple(sorted(self._records))

    def total_shares(self) -> int:
        return sum(r.shares for r in self._records.values())

    # -- engine-only ---------------------------------------------------------

    @transactional
    def deposit(self, caller: Address, beneficiary: Address, amount: Amount, release_epoch: int) -> EscrowRecord:
        """
        Pull `amount` of the engine's ledger balance into custody for `beneficiary`.

        Merges into an existing record: amounts add, the later release target wins.
        The engine must have approved this escrow for `amount`.
        """
        self._require_engine(caller)
        require_address(beneficiary, name="beneficiary")
        if require_amount(amount) == 0:
            raise ZeroAmount(f"{self.name}: deposit amount must be positive")
        require_amount(release_epoch, name="release_epoch")

        shares = self.ledger.shares_for_balance(amount)
        prev = self._records.get(beneficiary)
        if prev is None:
            record = EscrowRecord(amount=amount, shares=shares, release_epoch=release_epoch)
        else:
            record = EscrowRecord(
                amount=prev.amount + amount,
                shares=prev.shares + shares,
                release_epoch=max(prev.release_epoch, release_epoch),
            )
        self._records[beneficiary] = record
        self.ledger.transfer_from(self.address, caller, self.address, amount)
        logger.debug("%s deposit %d for %s (release %d)", self.name, amount, beneficiary, record.release_epoch)
        return record

    @transactional
    def retrieve(self, caller: Address, beneficiary: Address, amount: Amount) -> Amount:
        """Release `amount` to the beneficiary's own ledger balance once vested."""
        self._require_engine(caller)
        record = self._records.get(beneficiary)
        if record is not None and self.now() < record.release_epoch:
            raise NotYetVested(
                f"{self.name}: {beneficiary} vests at {record.release_epoch}, now {self.now()}"
            )
        return self._release(beneficiary, amount, to=beneficiary)

    @transactional
    def reclaim(self, caller: Address, beneficiary: Address, amount: Amount) -> Amount:
        """Release `amount` of the beneficiary's record to the engine, ignoring the clock."""
        self._require_engine(caller)
        return self._release(beneficiary, amount, to=caller)

    @transactional
    def reschedule(self, caller: Address, beneficiary: Address, release_epoch: int) -> EscrowRecord:
        """Move a record's release target later; an earlier target is ignored."""
        self._require_engine(caller)
        record = self._records.get(beneficiary)
        if record is None:
            raise InsufficientBalance(f"{self.name}: no record for {beneficiary}")
        if release_epoch > record.release_epoch:
            record = replace(record, release_epoch=release_epoch)
            self._records[beneficiary] = record
        return record

    def _release(self, beneficiary: Address, amount: Amount, *, to: Address) -> Amount:
        if require_amount(amount) == 0:
            raise ZeroAmount(f"{self.name}: release amount must be positive")
        record = self._records.get(beneficiary)
        value = self.value_of(beneficiary)
        if record is None or amount > value:
            raise InsufficientBalance(f"{self.name}: {beneficiary} holds {value} < {amount}")

        remaining_shares = record.shares - self.ledger.shares_for_balance(amount)
        if self.ledger.balance_for_shares(remaining_shares) == 0:
            # Closing a record hands over its sub-unit dust as well.
            del self._records[beneficiary]
            self.ledger.transfer_shares(self.address, to, record.shares)
        else:
            self._records[beneficiary] = replace(
                record,
                amount=max(0, record.amount - amount),
                shares=remaining_shares,
            )
            self.ledger.transfer(self.address, to, amount)
        logger.debug("%s release %d of %s to %s", self.name, amount, beneficiary, to)
        return amount

    def __repr__(self) -> str:
        return f"VestingEscrow({self.name}, {len(self._records)} records)"
