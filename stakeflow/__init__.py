"""
stakeflow: yield-bearing staking protocol (elastic receipt ledger, vesting
escrows, staking engine, liquidity reserve).
"""

__version__ = "0.1.0"
