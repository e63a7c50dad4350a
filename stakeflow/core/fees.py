"""
Instant-unstake fee kernels (deterministic, integer-only).

Fees are expressed in basis points of the unstaked amount. The fee is floored,
so `fee + payout == amount` exactly and any rounding dust stays with the payout.
"""

from __future__ import annotations

from dataclasses import dataclass


BPS_DENOM = 10_000

# Default ceiling for the reserve fee (25%).
MAX_FEE_BPS = 2_500


def validate_fee_bps(fee_bps: int, max_fee_bps: int = MAX_FEE_BPS) -> int:
    """Return `fee_bps` if it is an int in [0, max_fee_bps]; raise otherwise."""
    if not isinstance(fee_bps, int) or isinstance(fee_bps, bool):
        raise TypeError("fee_bps must be an int")
    if not (0 <= max_fee_bps <= BPS_DENOM):
        raise ValueError(f"max_fee_bps must be in [0, {BPS_DENOM}]: {max_fee_bps}")
    if not (0 <= fee_bps <= max_fee_bps):
        raise ValueError(f"fee_bps must be in [0, {max_fee_bps}]: {fee_bps}")
    return fee_bps


@dataclass(frozen=True)
class InstantUnstakeQuote:
    amount: int
    fee: int
    payout: int

    def __post_init__(self) -> None:
        for name, v in (("amount", self.amount), ("fee", self.fee), ("payout", self.payout)):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.fee + self.payout != self.amount:
            raise ValueError("fee + payout must equal amount")


def fee_for(amount: int, fee_bps: int) -> int:
    """Fee charged on `amount` (floor)."""
    if amount < 0:
        raise ValueError(f"amount must be non-negative: {amount}")
    return (amount * fee_bps) // BPS_DENOM


def quote_instant_unstake(amount: int, fee_bps: int) -> InstantUnstakeQuote:
    """
    Split an instant unstake of `amount` into (fee kept by the reserve, payout).

    Example: 25_000_000_000_000 at 1_000 bps pays out 22_500_000_000_000.
    """
    fee = fee_for(amount, fee_bps)
    return InstantUnstakeQuote(amount=amount, fee=fee, payout=amount - fee)
