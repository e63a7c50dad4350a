"""
External yield pool boundary.

The staking engine deposits base asset into an external pool and withdraws it
in cycles:

- `request_withdrawal` registers intent for the next cycle. A new request
  replaces the account's previous one.
- The pool owner calls `complete_rollover` to close a cycle; requests made in
  an earlier cycle become claimable.
- `claim_withdrawal` pays a matured request out.

`SimulatedYieldPool` is an in-memory implementation used by tests and embedders.
It does not generate yield; rewards reach stakers through the engine's
reward funding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

from ..errors import InsufficientBalance, NotYetVested, ZeroAmount
from ..state.chain import Address, Amount, Chain, Journaled, require_address, require_amount, transactional
from ..state.tokens import TokenLedger

if TYPE_CHECKING:
    from ..access import Capability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WithdrawalRequest:
    amount: Amount
    min_cycle: int


class ExternalYieldPool:
    """Interface the staking engine consumes."""

    address: Address

    def deposit(self, sender: Address, amount: Amount) -> None:
        raise NotImplementedError

    def request_withdrawal(self, sender: Address, amount: Amount) -> None:
        raise NotImplementedError

    def complete_rollover(self, caller: Address) -> int:
        raise NotImplementedError

    def claim_withdrawal(self, sender: Address, recipient: Address) -> Amount:
        raise NotImplementedError

    def current_cycle_index(self) -> int:
        raise NotImplementedError

    def current_cycle_start(self) -> int:
        raise NotImplementedError

    def cycle_duration(self) -> int:
        raise NotImplementedError

    def requested_withdrawal(self, account: Address) -> Optional[WithdrawalRequest]:
        raise NotImplementedError

    def balance_of(self, account: Address) -> Amount:
        raise NotImplementedError


class SimulatedYieldPool(ExternalYieldPool, Journaled):
    """In-memory pool over a `TokenLedger`, with owner-driven cycle rollover."""

    _journal_fields = ("_deposits", "_requests", "_cycle_index", "_cycle_start")

    def __init__(
        self,
        chain: Chain,
        owner: "Capability",
        token: TokenLedger,
        *,
        cycle_duration: int = 6_400,
        first_cycle_index: int = 1,
        address: Address = "contract:yield-pool",
    ) -> None:
        if not isinstance(cycle_duration, int) or isinstance(cycle_duration, bool) or cycle_duration <= 0:
            raise ValueError(f"cycle_duration must be a positive int: {cycle_duration!r}")
        if first_cycle_index < 0:
            raise ValueError(f"first_cycle_index must be non-negative: {first_cycle_index}")
        self.chain = chain
        self.owner = owner
        self.token = token
        self.address = require_address(address)
        self._cycle_duration = cycle_duration
        self._deposits: Dict[Address, Amount] = {}
        self._requests: Dict[Address, WithdrawalRequest] = {}
        self._cycle_index = first_cycle_index
        self._cycle_start = chain.block_number
        chain.register(self)

    # -- queries -------------------------------------------------------------

    def current_cycle_index(self) -> int:
        return self._cycle_index

    def current_cycle_start(self) -> int:
        return self._cycle_start

    def cycle_duration(self) -> int:
        return self._cycle_duration

    def next_cycle_start(self) -> int:
        return self._cycle_start + self._cycle_duration

    def requested_withdrawal(self, account: Address) -> Optional[WithdrawalRequest]:
        return self._requests.get(account)

    def balance_of(self, account: Address) -> Amount:
        return self._deposits.get(account, 0)

    # -- mutations -----------------------------------------------------------

    @transactional
    def deposit(self, sender: Address, amount: Amount) -> None:
        if require_amount(amount) == 0:
            raise ZeroAmount("deposit amount must be positive")
        self._deposits[sender] = self.balance_of(sender) + amount
        self.token.transfer_from(self.address, sender, self.address, amount)
        logger.debug("pool deposit %d by %s", amount, sender)

    @transactional
    def request_withdrawal(self, sender: Address, amount: Amount) -> None:
        """Replace `sender`'s request with one for `amount`, claimable from the next cycle."""
        require_amount(amount)
        balance = self.balance_of(sender)
        if amount > balance:
            raise InsufficientBalance(f"pool: {sender} holds {balance} < requested {amount}")
        if amount == 0:
            self._requests.pop(sender, None)
            return
        self._requests[sender] = WithdrawalRequest(amount=amount, min_cycle=self._cycle_index + 1)
        logger.debug("pool request %d by %s (min cycle %d)", amount, sender, self._cycle_index + 1)

    @transactional
    def complete_rollover(self, caller: Address) -> int:
        """Close the current cycle. Returns the new cycle index."""
        self.owner.require(caller)
        self._cycle_index += 1
        self._cycle_start = self.chain.block_number
        logger.info("pool rolled over to cycle %d at block %d", self._cycle_index, self._cycle_start)
        return self._cycle_index

    @transactional
    def claim_withdrawal(self, sender: Address, recipient: Address) -> Amount:
        """Pay `sender`'s matured request to `recipient`. Returns 0 when there is no request."""
        require_address(recipient, name="recipient")
        request = self._requests.get(sender)
        if request is None:
            return 0
        if self._cycle_index < request.min_cycle:
            raise NotYetVested(f"pool: request of {sender} matures at cycle {request.min_cycle}")
        balance = self.balance_of(sender)
        if request.amount > balance:
            raise InsufficientBalance(f"pool: {sender} holds {balance} < requested {request.amount}")
        del self._requests[sender]
        self._deposits[sender] = balance - request.amount
        if self._deposits[sender] == 0:
            del self._deposits[sender]
        self.token.transfer(self.address, recipient, request.amount)
        logger.debug("pool paid %d of %s to %s", request.amount, sender, recipient)
        return request.amount

    def __repr__(self) -> str:
        return f"SimulatedYieldPool(cycle={self._cycle_index}, accounts={len(self._deposits)})"
