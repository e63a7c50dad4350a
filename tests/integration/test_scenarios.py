# [TESTER] v1
"""End-to-end flows across engine, escrows, pool and reserve."""

from __future__ import annotations

import pytest

from stakeflow.core.reserve import MINIMUM_LIQUIDITY, ReserveConfig
from stakeflow.errors import InsufficientReserveFunds
from stakeflow.integration.config import ProtocolConfig
from stakeflow.integration.deployment import (
    Deployment,
    advance_to_next_cycle,
    deploy_protocol,
    mine_to_epoch_end,
)
from stakeflow.state.chain import Chain

ADMIN = "admin"
DAO = "dao-treasury"
LP1 = "lp1"
LP2 = "lp2"
STAKER = "staker1"


def _deploy(fee_bps: int) -> Deployment:
    config = ProtocolConfig(reserve=ReserveConfig(fee_bps=fee_bps))
    return deploy_protocol(Chain(block_number=1_000), config, admin=ADMIN)


def _provide(d: Deployment, provider: str, amount: int) -> int:
    d.token.mint(provider, amount)
    d.token.approve(provider, d.reserve.address, amount)
    return d.reserve.add_liquidity(provider, amount)


def _withdraw_all(d: Deployment, provider: str) -> int:
    payout = d.reserve.remove_liquidity(provider, d.reserve.balance_of(provider))
    assert d.reserve.balance_of(provider) == 0
    return payout


def _stake_and_instant_unstake(d: Deployment, user: str, amount: int) -> int:
    d.token.mint(user, amount)
    d.token.approve(user, d.engine.address, amount)
    d.engine.stake(user, amount)
    d.engine.claim(user, user)
    assert d.ledger.balance_of(user) == amount
    d.ledger.approve(user, d.engine.address, amount)
    payout = d.engine.instant_unstake(user, amount)
    assert d.ledger.balance_of(user) == 0
    assert d.token.balance_of(user) == payout
    return payout


def test_late_provider_gets_no_share_of_earlier_fees() -> None:
    d = _deploy(fee_bps=1_000)
    assert _provide(d, LP1, 10**14) == 10**14

    assert _stake_and_instant_unstake(d, STAKER, 25 * 10**12) == 225 * 10**11

    lp2_shares = _provide(d, LP2, 25 * 10**12)
    assert lp2_shares == 24_943_310_657_596
    assert lp2_shares < 25 * 10**12

    lp1_payout = _withdraw_all(d, LP1)
    assert lp1_payout == 100_227_272_727_272
    assert lp1_payout > 10**14

    lp2_payout = _withdraw_all(d, LP2)
    assert 25 * 10**12 - 2 <= lp2_payout <= 25 * 10**12
    assert d.check_invariants() == []


def test_fee_is_shared_pro_rata_between_earlier_providers() -> None:
    d = _deploy(fee_bps=2_000)
    _provide(d, DAO, 10**14)
    _provide(d, LP1, 25 * 10**12)

    assert _stake_and_instant_unstake(d, STAKER, 25 * 10**12) == 20 * 10**12

    lp1_payout = _withdraw_all(d, LP1)
    dao_payout = _withdraw_all(d, DAO)
    assert lp1_payout == 25_111_111_111_111
    assert dao_payout == 100_444_444_444_444
    assert dao_payout - 10**14 == 4 * (lp1_payout - 25 * 10**12)


def test_provider_after_fee_event_gets_deposit_back() -> None:
    d = _deploy(fee_bps=2_000)
    _provide(d, DAO, 10**14)
    _stake_and_instant_unstake(d, STAKER, 25 * 10**12)

    assert _provide(d, LP1, 25 * 10**12) == 24_886_877_828_054
    assert _withdraw_all(d, DAO) == 100_454_545_454_545
    assert _withdraw_all(d, LP1) == 24_999_999_999_999


def test_withdrawal_above_liquid_float_fails_and_keeps_shares() -> None:
    d = _deploy(fee_bps=2_000)
    assert d.reserve.liquid_float() == MINIMUM_LIQUIDITY
    _provide(d, DAO, 4 * 10**15)
    _stake_and_instant_unstake(d, STAKER, 4 * 10**15)

    assert d.reserve.liquid_float() == 18 * 10**14
    assert d.reserve.balance_of(DAO) == 4 * 10**15
    with pytest.raises(InsufficientReserveFunds, match="not enough funds"):
        d.reserve.remove_liquidity(DAO, 4 * 10**15)
    assert d.reserve.balance_of(DAO) == 4 * 10**15
    assert d.token.balance_of(DAO) == 0


def test_reserve_refills_its_float_through_the_engine() -> None:
    d = _deploy(fee_bps=2_000)
    _provide(d, DAO, 4 * 10**15)
    _stake_and_instant_unstake(d, STAKER, 4 * 10**15)

    d.reserve.unstake_all_reward_tokens(ADMIN)
    d.engine.send_withdrawal_requests(ADMIN)
    advance_to_next_cycle(d)
    d.reserve.unstake_all_reward_tokens(ADMIN)

    assert d.reserve.liquid_float() == 58 * 10**14
    assert d.reserve.remove_liquidity(DAO, 4 * 10**15) == 464 * 10**13
    assert d.check_invariants() == []


def test_stakers_share_rewards_and_exit_in_batches() -> None:
    d = _deploy(fee_bps=0)
    users = {"alice": 30_000, "bob": 10_000}
    for user, amount in users.items():
        d.token.mint(user, amount)
        d.token.approve(user, d.engine.address, amount)
        d.engine.stake(user, amount)
        d.engine.claim(user, user)

    d.token.mint(ADMIN, 4_000)
    d.token.approve(ADMIN, d.engine.address, 4_000)
    d.engine.add_rewards_for_stakers(ADMIN, 4_000)
    mine_to_epoch_end(d)
    d.engine.rebase()
    assert d.ledger.balance_of("alice") == 30_000
    mine_to_epoch_end(d)
    d.engine.rebase()
    assert d.ledger.balance_of("alice") == 33_000
    assert d.ledger.balance_of("bob") == 11_000

    for user in users:
        balance = d.ledger.balance_of(user)
        d.ledger.approve(user, d.engine.address, balance)
        d.engine.unstake(user, balance)
    assert d.engine.send_withdrawal_requests("bob") == 44_000
    assert d.pool.requested_withdrawal(d.engine.address).amount == 44_000

    advance_to_next_cycle(d)
    assert d.engine.claim_withdraw("alice", "alice") == 33_000
    assert d.engine.claim_withdraw("bob", "bob") == 11_000
    assert d.token.balance_of("alice") == 33_000
    assert d.token.balance_of("bob") == 11_000
    assert d.ledger.total_supply == 0
    assert d.pool.balance_of(d.engine.address) == 0
    assert d.check_invariants() == []
