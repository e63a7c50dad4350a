# [TESTER] v1

from __future__ import annotations

from typing import Optional

import pytest

from stakeflow.core.positions import Active, Cooling, Idle, Warming, Withdrawable
from stakeflow.core.staking import PendingExternalWithdrawal, StakingConfig
from stakeflow.errors import (
    AlreadyInitialized,
    InsufficientBalance,
    NotAuthorized,
    NotYetVested,
    OutOfRange,
    Paused,
    ZeroAmount,
)
from stakeflow.integration.config import ProtocolConfig
from stakeflow.integration.deployment import (
    Deployment,
    advance_to_next_cycle,
    deploy_protocol,
    mine_to_cycle_end,
    mine_to_epoch_end,
)
from stakeflow.state.chain import Chain

ADMIN = "admin"
ALICE = "alice"
BOB = "bob"


def _deploy(*, warmup_period: int = 0, request_window_blocks: Optional[int] = None) -> Deployment:
    config = ProtocolConfig(
        staking=StakingConfig(warmup_period=warmup_period, request_window_blocks=request_window_blocks),
    )
    return deploy_protocol(Chain(block_number=1_000), config, admin=ADMIN)


def _stake(d: Deployment, user: str, amount: int, *, claim: bool = False) -> None:
    d.token.mint(user, amount)
    d.token.approve(user, d.engine.address, amount)
    d.engine.stake(user, amount)
    if claim:
        d.engine.claim(user, user)


def _unstake(d: Deployment, user: str, amount: int, **kwargs) -> None:
    d.ledger.approve(user, d.engine.address, amount)
    d.engine.unstake(user, amount, **kwargs)


class TestStakeAndClaim:
    def test_stake_forwards_to_pool_and_warms_receipt(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 10_000)

        assert d.token.balance_of(ALICE) == 0
        assert d.pool.balance_of(d.engine.address) == 10_000
        assert d.token.balance_of(d.pool.address) == 10_000
        assert d.ledger.balance_of(ALICE) == 0
        assert d.ledger.balance_of(d.warmup.address) == 10_000
        info = d.engine.warmup_info(ALICE)
        assert info is not None and info.amount == 10_000 and info.release_epoch == 1

        assert d.engine.claim(ALICE, ALICE) == 10_000
        assert d.ledger.balance_of(ALICE) == 10_000
        assert d.ledger.balance_of(d.warmup.address) == 0
        assert d.engine.warmup_info(ALICE) is None

    def test_stake_for_another_recipient(self) -> None:
        d = _deploy()
        d.token.mint(ALICE, 50)
        d.token.approve(ALICE, d.engine.address, 50)
        d.engine.stake(ALICE, 50, BOB)
        assert d.engine.claim(ALICE, BOB) == 50
        assert d.ledger.balance_of(BOB) == 50

    def test_stake_requires_allowance_and_positive_amount(self) -> None:
        d = _deploy()
        d.token.mint(ALICE, 100)
        with pytest.raises(InsufficientBalance):
            d.engine.stake(ALICE, 100)
        with pytest.raises(ZeroAmount):
            d.engine.stake(ALICE, 0)
        assert d.ledger.total_supply == 0

    def test_claim_waits_for_warmup(self) -> None:
        d = _deploy(warmup_period=1)
        _stake(d, ALICE, 10_000)

        assert d.engine.claim(ALICE, ALICE) == 0
        assert d.ledger.balance_of(d.warmup.address) == 10_000

        mine_to_epoch_end(d)
        assert d.engine.rebase() is True
        assert d.engine.epoch.number == 2
        assert d.engine.claim(ALICE, ALICE) == 10_000
        assert d.ledger.balance_of(d.warmup.address) == 0

    def test_claim_without_record_is_zero(self) -> None:
        d = _deploy()
        assert d.engine.claim(ALICE, ALICE) == 0


class TestUnstake:
    def test_unstake_more_than_wallet_and_warmup_fails(self) -> None:
        d = _deploy(warmup_period=1)
        _stake(d, ALICE, 5_000)
        d.ledger.approve(ALICE, d.engine.address, 5_001)
        with pytest.raises(InsufficientBalance, match="not enough receipt balance"):
            d.engine.unstake(ALICE, 5_001)
        assert d.engine.warmup_info(ALICE) is not None
        assert d.engine.cooldown_info(ALICE) is None

    def test_unstake_uses_wallet_then_warmup(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 5_000, claim=True)
        _stake(d, ALICE, 5_000)
        assert d.ledger.balance_of(ALICE) == 5_000
        assert d.engine.warmup_info(ALICE) is not None

        _unstake(d, ALICE, 10_000)
        assert d.ledger.balance_of(ALICE) == 0
        assert d.engine.warmup_info(ALICE) is None
        cooldown = d.engine.cooldown_info(ALICE)
        assert cooldown is not None and cooldown.amount == 10_000
        assert d.ledger.balance_of(d.cooldown.address) == 10_000

    def test_unstake_without_warmup_fallback(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 1_000)
        with pytest.raises(InsufficientBalance):
            _unstake(d, ALICE, 1_000, use_warmup_funds=False)

    def test_unstake_half_without_claiming(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 5_000)
        _unstake(d, ALICE, 2_500)
        warm = d.engine.warmup_info(ALICE)
        assert warm is not None and warm.amount == 2_500
        assert d.ledger.balance_of(d.warmup.address) == 2_500
        assert d.ledger.balance_of(d.cooldown.address) == 2_500

    def test_unstake_without_receipt_allowance_changes_nothing(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 1_000, claim=True)
        with pytest.raises(InsufficientBalance):
            d.engine.unstake(ALICE, 1_000)
        assert d.ledger.balance_of(ALICE) == 1_000
        assert d.engine.queued_withdrawal_amount() == 0


class TestWithdrawalRequests:
    def test_requests_are_zero_until_sent(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 5_000, claim=True)
        _unstake(d, ALICE, 5_000)

        assert d.pool.requested_withdrawal(d.engine.address) is None
        assert d.engine.queued_withdrawal_amount(ALICE) == 5_000

        assert d.engine.send_withdrawal_requests(ALICE) == 5_000
        request = d.pool.requested_withdrawal(d.engine.address)
        assert request is not None and request.amount == 5_000
        assert d.engine.pending_withdrawal == PendingExternalWithdrawal(5_000, 1)
        assert d.engine.queued_withdrawal_amount() == 0
        assert d.engine.requested_cycle(ALICE) == 1
        cooldown = d.engine.cooldown_info(ALICE)
        assert cooldown is not None and cooldown.release_epoch == 2

    def test_unstakes_from_several_users_are_batched(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 25_000, claim=True)
        _stake(d, BOB, 25_000, claim=True)
        _unstake(d, ALICE, 25_000)
        _unstake(d, BOB, 25_000)

        assert d.engine.send_withdrawal_requests(BOB) == 50_000
        request = d.pool.requested_withdrawal(d.engine.address)
        assert request is not None and request.amount == 50_000

    def test_one_request_per_pool_cycle(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 2_500, claim=True)
        _unstake(d, ALICE, 2_500)
        assert d.engine.send_withdrawal_requests(ALICE) == 2_500

        _stake(d, ALICE, 5_000, claim=True)
        _unstake(d, ALICE, 5_000)
        mine_to_cycle_end(d)
        # no rollover yet: same cycle, the earlier request stands
        assert d.engine.send_withdrawal_requests(ALICE) == 0
        request = d.pool.requested_withdrawal(d.engine.address)
        assert request is not None and request.amount == 2_500

        advance_to_next_cycle(d)
        assert d.engine.send_withdrawal_requests(ALICE) == 5_000
        request = d.pool.requested_withdrawal(d.engine.address)
        assert request is not None and request.amount == 5_000
        # the matured first batch was collected before it could be overwritten
        assert d.engine.withdrawal_float == 2_500

    def test_request_window_defers_requests(self) -> None:
        d = _deploy(request_window_blocks=100)
        _stake(d, ALICE, 5_000, claim=True)
        _unstake(d, ALICE, 5_000)

        assert d.engine.send_withdrawal_requests(ALICE) == 0
        assert d.pool.requested_withdrawal(d.engine.address) is None

        mine_to_cycle_end(d)
        assert d.engine.send_withdrawal_requests(ALICE) == 5_000

    def test_nothing_queued_does_not_use_up_the_cycle(self) -> None:
        d = _deploy()
        assert d.engine.send_withdrawal_requests(ALICE) == 0
        assert d.engine.pending_withdrawal.cycle_index_at_request is None
        _stake(d, ALICE, 10, claim=True)
        _unstake(d, ALICE, 10)
        assert d.engine.send_withdrawal_requests(ALICE) == 10


class TestClaimWithdraw:
    def test_withdraw_returns_base_asset_after_rollover(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 100_000, claim=True)
        assert d.token.balance_of(ALICE) == 0

        _unstake(d, ALICE, 100_000)
        d.engine.send_withdrawal_requests(ALICE)
        with pytest.raises(NotYetVested):
            d.engine.claim_withdraw(ALICE, ALICE)

        advance_to_next_cycle(d)
        assert d.engine.claim_withdraw(ALICE, ALICE) == 100_000
        assert d.token.balance_of(ALICE) == 100_000
        assert d.engine.cooldown_info(ALICE) is None
        assert d.ledger.total_supply == 0
        assert d.engine.withdrawal_float == 0
        assert d.engine.staker_states(ALICE) == (Idle(),)

    def test_cannot_withdraw_before_the_request_is_sent(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 100_000, claim=True)
        _unstake(d, ALICE, 100_000)
        advance_to_next_cycle(d)

        with pytest.raises(NotYetVested):
            d.engine.claim_withdraw(ALICE, ALICE)
        assert d.token.balance_of(ALICE) == 0

    def test_nothing_to_withdraw_is_zero(self) -> None:
        d = _deploy()
        assert d.engine.claim_withdraw(ALICE, ALICE) == 0

    def test_rebase_growth_during_cooldown_goes_to_remaining_stakers(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 1_000, claim=True)
        _stake(d, BOB, 1_000, claim=True)
        _unstake(d, ALICE, 1_000)

        d.token.mint(ADMIN, 200)
        d.token.approve(ADMIN, d.engine.address, 200)
        d.engine.add_rewards_for_stakers(ADMIN, 200)
        for _ in range(2):
            mine_to_epoch_end(d)
            d.engine.rebase()
        assert d.ledger.balance_of(BOB) == 1_100
        assert d.cooldown.value_of(ALICE) == 1_100

        d.engine.send_withdrawal_requests(ALICE)
        advance_to_next_cycle(d)
        assert d.engine.claim_withdraw(ALICE, ALICE) == 1_000
        assert d.token.balance_of(ALICE) == 1_000
        assert d.engine.epoch.pending_amount == 100
        assert d.ledger.shares_of(d.cooldown.address) == 0
        assert d.ledger.shares_of(d.engine.address) == 0

        assert d.engine.rebase() is True
        assert d.engine.epoch.distribute_amount == 100
        assert d.ledger.total_supply == 1_100
        assert d.engine.rebase() is True
        assert d.ledger.total_supply == 1_200
        assert d.ledger.balance_of(BOB) == 1_200


class TestRewards:
    def test_rewards_apply_at_the_end_of_the_following_epoch(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 10_000, claim=True)
        _stake(d, BOB, 1_000, claim=True)

        assert d.engine.rebase() is False
        d.token.mint(ADMIN, 1_000)
        d.token.approve(ADMIN, d.engine.address, 1_000)
        d.engine.add_rewards_for_stakers(ADMIN, 1_000, trigger_rebase=True)
        assert d.ledger.balance_of(ALICE) == 10_000
        assert d.ledger.balance_of(BOB) == 1_000
        assert d.engine.epoch.pending_amount == 1_000

        mine_to_epoch_end(d)
        assert d.engine.rebase() is True
        assert d.ledger.balance_of(ALICE) == 10_000
        assert d.ledger.balance_of(BOB) == 1_000
        assert d.engine.epoch.distribute_amount == 1_000
        assert d.engine.epoch.end_block == 1_200

        mine_to_epoch_end(d)
        assert d.engine.rebase() is True
        assert d.ledger.balance_of(ALICE) == 10_909
        assert d.ledger.balance_of(BOB) == 1_090
        assert d.engine.epoch.distribute_amount == 0
        assert d.engine.epoch.end_block == 1_300

    def test_funding_at_the_boundary_waits_for_the_next_epoch(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 10_000, claim=True)
        _stake(d, BOB, 1_000, claim=True)

        mine_to_epoch_end(d)
        d.token.mint(ADMIN, 1_000)
        d.token.approve(ADMIN, d.engine.address, 1_000)
        epoch = d.engine.add_rewards_for_stakers(ADMIN, 1_000, trigger_rebase=True)
        assert epoch.number == 2
        assert epoch.distribute_amount == 1_000
        assert d.ledger.balance_of(ALICE) == 10_000
        assert d.engine.rebase() is False

        mine_to_epoch_end(d)
        d.engine.rebase()
        assert d.ledger.balance_of(ALICE) == 10_909
        assert d.ledger.balance_of(BOB) == 1_090

    def test_rewards_carry_over_while_nothing_is_staked(self) -> None:
        d = _deploy()
        d.token.mint(ADMIN, 500)
        d.token.approve(ADMIN, d.engine.address, 500)
        d.engine.add_rewards_for_stakers(ADMIN, 500)
        mine_to_epoch_end(d)
        assert d.engine.rebase() is True
        assert d.engine.epoch.number == 2
        assert d.engine.epoch.distribute_amount == 500

        mine_to_epoch_end(d)
        assert d.engine.rebase() is True
        assert d.engine.epoch.number == 3
        assert d.engine.epoch.distribute_amount == 500

        _stake(d, ALICE, 1_000, claim=True)
        mine_to_epoch_end(d)
        assert d.engine.rebase() is True
        assert d.ledger.balance_of(ALICE) == 1_500

    def test_one_epoch_per_rebase_call(self) -> None:
        d = _deploy()
        d.chain.mine(1_000)
        assert d.engine.rebase() is True
        assert d.engine.rebase() is True
        assert d.engine.epoch.number == 3

    def test_only_the_owner_funds_rewards(self) -> None:
        d = _deploy()
        d.token.mint(ALICE, 10)
        d.token.approve(ALICE, d.engine.address, 10)
        with pytest.raises(NotAuthorized):
            d.engine.add_rewards_for_stakers(ALICE, 10)


class TestAdministration:
    def test_overrides_pause_the_matching_operation(self) -> None:
        d = _deploy()
        _stake(d, ALICE, 100, claim=True)

        d.engine.override_staking(ADMIN, True)
        with pytest.raises(Paused) as exc:
            _stake(d, ALICE, 1)
        assert exc.value.retryable

        d.engine.override_unstaking(ADMIN, True)
        with pytest.raises(Paused):
            _unstake(d, ALICE, 1)
        with pytest.raises(Paused):
            d.engine.instant_unstake(ALICE, 1)

        d.engine.override_withdrawals(ADMIN, True)
        with pytest.raises(Paused):
            d.engine.send_withdrawal_requests(ALICE)

        d.engine.override_staking(ADMIN, False)
        _stake(d, ALICE, 1)
        assert d.engine.unstaking_paused and d.engine.withdrawals_paused
        assert not d.engine.staking_paused

    def test_admin_calls_require_the_capability(self) -> None:
        d = _deploy()
        with pytest.raises(NotAuthorized):
            d.engine.override_staking(ALICE, True)
        with pytest.raises(NotAuthorized):
            d.engine.set_warmup_period(ALICE, 2)
        with pytest.raises(OutOfRange):
            d.engine.set_warmup_period(ADMIN, -1)
        with pytest.raises(OutOfRange):
            d.engine.set_request_window(ADMIN, -5)
        d.engine.set_warmup_period(ADMIN, 2)
        d.engine.set_request_window(ADMIN, 10)
        assert d.engine.warmup_period == 2
        assert d.engine.request_window_blocks == 10

    def test_wire_is_callable_once(self) -> None:
        d = _deploy()
        with pytest.raises(AlreadyInitialized):
            d.engine.wire(ADMIN, d.warmup, d.cooldown, d.reserve)


def test_staker_states_follow_the_lifecycle() -> None:
    d = _deploy(warmup_period=1)
    assert d.engine.staker_states(ALICE) == (Idle(),)

    _stake(d, ALICE, 1_000)
    assert d.engine.staker_states(ALICE) == (Warming(amount=1_000, release_epoch=2),)

    mine_to_epoch_end(d)
    d.engine.rebase()
    d.engine.claim(ALICE, ALICE)
    assert d.engine.staker_states(ALICE) == (Active(balance=1_000),)

    _unstake(d, ALICE, 400)
    assert d.engine.staker_states(ALICE) == (Active(balance=600), Cooling(amount=400, release_cycle=2))

    d.engine.send_withdrawal_requests(ALICE)
    advance_to_next_cycle(d)
    assert d.engine.staker_states(ALICE) == (Active(balance=600), Withdrawable(amount=400))
    assert d.engine.is_withdrawable(ALICE)
