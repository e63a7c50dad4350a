"""Invariant checkers for a wired staking protocol.

Each function takes the staking engine (which reaches every other component)
and returns True when the invariant holds. `check_all()` returns the list of
violated invariant IDs (empty = all pass).
"""

from __future__ import annotations

from typing import Callable

from ..errors import InvariantViolation
from .fees import BPS_DENOM
from .staking import StakingEngine


def inv_ledger_supply_covers_balances(e: StakingEngine) -> bool:
    ledger = e.ledger
    return sum(ledger.get_all_balances().values()) <= ledger.total_supply


def inv_ledger_shares_sum(e: StakingEngine) -> bool:
    ledger = e.ledger
    return sum(ledger.shares_of(a) for a in ledger.holders()) == ledger.total_shares


def inv_index_monotone(e: StakingEngine) -> bool:
    indices = [r.index for r in e.ledger.rebases]
    return all(a <= b for a, b in zip(indices, indices[1:]))


def inv_warmup_custody(e: StakingEngine) -> bool:
    if e.warmup is None:
        return True
    return e.warmup.total_shares() <= e.ledger.shares_of(e.warmup.address)


def inv_cooldown_custody(e: StakingEngine) -> bool:
    if e.cooldown is None:
        return True
    return e.cooldown.total_shares() <= e.ledger.shares_of(e.cooldown.address)


def inv_queue_backed_by_cooldown(e: StakingEngine) -> bool:
    if e.cooldown is None:
        return not e.queued_withdrawal_amount()
    for user in e.withdrawers():
        record = e.cooldown.record_of(user)
        if record is None or record.amount < e.queued_withdrawal_amount(user):
            return False
    return True


def inv_withdrawal_float_held(e: StakingEngine) -> bool:
    return e.token.balance_of(e.address) >= e.withdrawal_float


def inv_pending_within_pool(e: StakingEngine) -> bool:
    return e.pending_withdrawal.requested_amount <= e.pool.balance_of(e.address)


def inv_reserve_shares_sum(e: StakingEngine) -> bool:
    if e.reserve is None:
        return True
    return sum(e.reserve.get_all_balances().values()) == e.reserve.total_shares


def inv_reserve_seed_locked(e: StakingEngine) -> bool:
    reserve = e.reserve
    if reserve is None or not reserve.initialized:
        return True
    return reserve.balance_of(reserve.address) == reserve.minimum_liquidity


def inv_reserve_fee_bounded(e: StakingEngine) -> bool:
    if e.reserve is None:
        return True
    return 0 <= e.reserve.fee_bps <= e.reserve.max_fee_bps <= BPS_DENOM


# ---------------------------------------------------------------------------
# Registry + check_all
# ---------------------------------------------------------------------------

INVARIANT_REGISTRY: dict[str, Callable[[StakingEngine], bool]] = {
    "inv_ledger_supply_covers_balances": inv_ledger_supply_covers_balances,
    "inv_ledger_shares_sum": inv_ledger_shares_sum,
    "inv_index_monotone": inv_index_monotone,
    "inv_warmup_custody": inv_warmup_custody,
    "inv_cooldown_custody": inv_cooldown_custody,
    "inv_queue_backed_by_cooldown": inv_queue_backed_by_cooldown,
    "inv_withdrawal_float_held": inv_withdrawal_float_held,
    "inv_pending_within_pool": inv_pending_within_pool,
    "inv_reserve_shares_sum": inv_reserve_shares_sum,
    "inv_reserve_seed_locked": inv_reserve_seed_locked,
    "inv_reserve_fee_bounded": inv_reserve_fee_bounded,
}


def check_all(engine: StakingEngine) -> list[str]:
    """Return list of violated invariant IDs (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(engine)
    ]


def assert_all(engine: StakingEngine) -> None:
    violations = check_all(engine)
    if violations:
        raise InvariantViolation(violations)
