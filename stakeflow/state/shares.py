"""
Reserve share balances for the liquidity reserve.

Shares are tracked separately from asset balances; their value is derived by
the reserve from its locked value.
"""

from __future__ import annotations

from typing import Dict

from .chain import Address, Amount


class ShareTable:
    """
    Deterministic share table mapping holder -> share amount.

    Notes:
    - Share balances are always non-negative.
    - Zero balances are omitted to keep the table sparse.
    - `total` is maintained alongside the entries and always equals their sum.
    """

    def __init__(self) -> None:
        self._balances: Dict[Address, Amount] = {}
        self._total: Amount = 0

    @property
    def total(self) -> Amount:
        return self._total

    def get(self, holder: Address) -> Amount:
        """Get the share balance of `holder`. Returns 0 if not found."""
        return self._balances.get(holder, 0)

    def mint(self, holder: Address, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"mint amount must be non-negative: {amount}")
        self._set(holder, self.get(holder) + amount)
        self._total += amount

    def burn(self, holder: Address, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"burn amount must be non-negative: {amount}")
        current = self.get(holder)
        if current < amount:
            raise ValueError(f"Insufficient shares: {current} < {amount}")
        self._set(holder, current - amount)
        self._total -= amount

    def get_all_balances(self) -> Dict[Address, Amount]:
        return dict(self._balances)

    def verify_total(self) -> bool:
        return sum(self._balances.values()) == self._total

    def _set(self, holder: Address, amount: Amount) -> None:
        if amount == 0:
            self._balances.pop(holder, None)
        else:
            self._balances[holder] = amount

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShareTable):
            return NotImplemented
        return self._balances == other._balances and self._total == other._total

    def __repr__(self) -> str:
        return f"ShareTable({len(self._balances)} holders, total={self._total})"
