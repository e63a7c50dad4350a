"""
State management for the staking protocol
"""

from .chain import ZERO_ADDRESS, Address, Amount, Chain, Journaled, transactional
from .ledger import INDEX_SCALE, INITIAL_SHARES_PER_UNIT, ElasticLedger, RebaseRecord
from .shares import ShareTable
from .tokens import ReceiveHookToken, TokenLedger

__all__ = [
    "ZERO_ADDRESS",
    "Address",
    "Amount",
    "Chain",
    "Journaled",
    "transactional",
    "INDEX_SCALE",
    "INITIAL_SHARES_PER_UNIT",
    "ElasticLedger",
    "RebaseRecord",
    "ShareTable",
    "ReceiveHookToken",
    "TokenLedger",
]
