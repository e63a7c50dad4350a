"""
Core staking protocol components
"""

from .epoch import Epoch, add_rewards, advance, init_epoch, is_due
from .escrow import EscrowRecord, VestingEscrow
from .fees import BPS_DENOM, MAX_FEE_BPS, InstantUnstakeQuote, quote_instant_unstake, validate_fee_bps
from .invariants import assert_all, check_all
from .positions import Active, Cooling, Idle, StakerState, Warming, Withdrawable, derive_states
from .reserve import MINIMUM_LIQUIDITY, LiquidityReserve, ReserveConfig
from .staking import PendingExternalWithdrawal, StakingConfig, StakingEngine

__all__ = [
    "Epoch",
    "add_rewards",
    "advance",
    "init_epoch",
    "is_due",
    "EscrowRecord",
    "VestingEscrow",
    "BPS_DENOM",
    "MAX_FEE_BPS",
    "InstantUnstakeQuote",
    "quote_instant_unstake",
    "validate_fee_bps",
    "assert_all",
    "check_all",
    "Active",
    "Cooling",
    "Idle",
    "StakerState",
    "Warming",
    "Withdrawable",
    "derive_states",
    "MINIMUM_LIQUIDITY",
    "LiquidityReserve",
    "ReserveConfig",
    "PendingExternalWithdrawal",
    "StakingConfig",
    "StakingEngine",
]
