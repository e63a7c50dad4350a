"""
Explicit per-user staking states.

The engine stores escrow records, not a state enum; `derive_states` turns
those records into tagged variants a caller can pattern-match on. A user can
be in several states at once (for example Active while a withdrawal cools
down); `Idle` is reported only when nothing else applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .escrow import EscrowRecord


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Warming:
    amount: int
    release_epoch: int


@dataclass(frozen=True)
class Active:
    balance: int


@dataclass(frozen=True)
class Cooling:
    amount: int
    release_cycle: int


@dataclass(frozen=True)
class Withdrawable:
    amount: int


StakerState = Union[Idle, Warming, Active, Cooling, Withdrawable]


def derive_states(
    *,
    wallet_balance: int,
    warmup: Optional[EscrowRecord],
    warmup_value: int,
    cooldown: Optional[EscrowRecord],
    cooldown_withdrawable: bool,
) -> Tuple[StakerState, ...]:
    """
    Build the state tuple from raw records.

    Warmup is reported at its current value (it keeps earning rebases);
    cooldown at its nominal amount, which is what the withdrawal pays out.
    """
    states: list[StakerState] = []
    if warmup is not None and warmup_value > 0:
        states.append(Warming(amount=warmup_value, release_epoch=warmup.release_epoch))
    if wallet_balance > 0:
        states.append(Active(balance=wallet_balance))
    if cooldown is not None:
        if cooldown_withdrawable:
            states.append(Withdrawable(amount=cooldown.amount))
        else:
            states.append(Cooling(amount=cooldown.amount, release_cycle=cooldown.release_epoch))
    if not states:
        return (Idle(),)
    return tuple(states)
