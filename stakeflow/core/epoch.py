"""
Epoch clock kernel.

Pure functions over an immutable `Epoch` record; the staking engine owns the
current value and replaces it on every change.

Rewards lag one epoch. Funding during an epoch accumulates in
`pending_amount`; closing the epoch applies its `distribute_amount` and turns
the pending funds into the next epoch's `distribute_amount`. A reward funded
in epoch N therefore reaches balances at the end of epoch N + 1. Processing
advances exactly one epoch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Epoch:
    """Reward-distribution period of the staking engine, measured in blocks."""

    number: int
    distribute_amount: int
    length: int
    end_block: int
    pending_amount: int = 0

    def __post_init__(self) -> None:
        for name, v in (
            ("number", self.number),
            ("distribute_amount", self.distribute_amount),
            ("length", self.length),
            ("end_block", self.end_block),
            ("pending_amount", self.pending_amount),
        ):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.length == 0:
            raise ValueError("length must be positive")

    @property
    def queued_amount(self) -> int:
        """Funded rewards not yet applied to balances."""
        return self.distribute_amount + self.pending_amount


def init_epoch(number: int, length: int, end_block: int) -> Epoch:
    return Epoch(number=number, distribute_amount=0, length=length, end_block=end_block)


def is_due(epoch: Epoch, block_number: int) -> bool:
    """Return True if `block_number` has reached the epoch's end block."""
    return block_number >= epoch.end_block


def add_rewards(epoch: Epoch, amount: int) -> Epoch:
    """Queue `amount` for the epoch after this one."""
    if amount < 0:
        raise ValueError(f"amount must be non-negative: {amount}")
    return replace(epoch, pending_amount=epoch.pending_amount + amount)


def advance(epoch: Epoch, *, carry: int = 0) -> Epoch:
    """
    Close `epoch` and open the next one.

    The next epoch distributes whatever was funded during `epoch`, plus
    `carry`: the part of `distribute_amount` that could not be applied (for
    example because nothing was staked yet).
    """
    if not (0 <= carry <= epoch.distribute_amount):
        raise ValueError(f"carry must be in [0, {epoch.distribute_amount}]: {carry}")
    return Epoch(
        number=epoch.number + 1,
        distribute_amount=carry + epoch.pending_amount,
        length=epoch.length,
        end_block=epoch.end_block + epoch.length,
    )
