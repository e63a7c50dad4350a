# [TESTER] v1

from __future__ import annotations

from typing import List, Tuple

import pytest

from stakeflow.access import Capability
from stakeflow.core.escrow import VestingEscrow
from stakeflow.errors import (
    AlreadyInitialized,
    InsufficientBalance,
    NotAuthorized,
    NotPoolCaller,
    NotYetVested,
    ZeroAmount,
)
from stakeflow.state.chain import Chain
from stakeflow.state.ledger import ElasticLedger

ADMIN = "admin"
ENGINE = "contract:staking"


def _setup(engine_balance: int = 10_000) -> Tuple[ElasticLedger, VestingEscrow, List[int]]:
    chain = Chain()
    owner = Capability(chain, ADMIN)
    ledger = ElasticLedger(chain, owner)
    ledger.initialize(ADMIN, ENGINE)
    escrow = VestingEscrow(chain, owner, ledger, name="warmup")
    clock = [1]
    escrow.initialize(ADMIN, ENGINE, lambda: clock[0])
    if engine_balance:
        ledger.mint(ENGINE, ENGINE, engine_balance)
    return ledger, escrow, clock


def _deposit(ledger: ElasticLedger, escrow: VestingEscrow, who: str, amount: int, release: int) -> None:
    ledger.approve(ENGINE, escrow.address, amount)
    escrow.deposit(ENGINE, who, amount, release)


def test_initialize_is_owner_only_and_once() -> None:
    chain = Chain()
    owner = Capability(chain, ADMIN)
    escrow = VestingEscrow(chain, owner, ElasticLedger(chain, owner))
    with pytest.raises(NotAuthorized):
        escrow.initialize("mallory", ENGINE, lambda: 0)
    escrow.initialize(ADMIN, ENGINE, lambda: 0)
    with pytest.raises(AlreadyInitialized):
        escrow.initialize(ADMIN, ENGINE, lambda: 0)


def test_deposit_merges_and_keeps_later_release() -> None:
    ledger, escrow, _clock = _setup()
    _deposit(ledger, escrow, "alice", 300, 5)
    _deposit(ledger, escrow, "alice", 200, 3)

    record = escrow.record_of("alice")
    assert record is not None
    assert record.amount == 500
    assert record.release_epoch == 5
    assert ledger.balance_of(escrow.address) == 500
    assert ledger.balance_of(ENGINE) == 9_500
    assert escrow.beneficiaries() == ("alice",)


def test_deposit_without_approval_leaves_no_record() -> None:
    ledger, escrow, _clock = _setup()
    with pytest.raises(InsufficientBalance):
        escrow.deposit(ENGINE, "alice", 100, 1)
    assert escrow.record_of("alice") is None
    assert ledger.balance_of(ENGINE) == 10_000


def test_retrieve_waits_for_the_clock() -> None:
    ledger, escrow, clock = _setup()
    _deposit(ledger, escrow, "alice", 400, 3)

    with pytest.raises(NotYetVested) as exc:
        escrow.retrieve(ENGINE, "alice", 400)
    assert exc.value.retryable
    assert not escrow.is_vested("alice")

    clock[0] = 3
    assert escrow.is_vested("alice")
    escrow.retrieve(ENGINE, "alice", 150)
    assert ledger.balance_of("alice") == 150
    assert escrow.value_of("alice") == 250

    escrow.retrieve(ENGINE, "alice", 250)
    assert escrow.record_of("alice") is None
    assert ledger.balance_of("alice") == 400


def test_retrieve_more_than_held_fails() -> None:
    ledger, escrow, _clock = _setup()
    _deposit(ledger, escrow, "alice", 100, 1)
    with pytest.raises(InsufficientBalance):
        escrow.retrieve(ENGINE, "alice", 101)
    with pytest.raises(InsufficientBalance):
        escrow.retrieve(ENGINE, "bob", 1)
    with pytest.raises(ZeroAmount):
        escrow.retrieve(ENGINE, "alice", 0)


def test_reclaim_ignores_clock_and_pays_the_engine() -> None:
    ledger, escrow, _clock = _setup()
    _deposit(ledger, escrow, "alice", 100, 99)
    escrow.reclaim(ENGINE, "alice", 60)
    assert ledger.balance_of(ENGINE) == 9_960
    assert escrow.value_of("alice") == 40


def test_reschedule_only_moves_later() -> None:
    ledger, escrow, _clock = _setup()
    _deposit(ledger, escrow, "alice", 100, 4)
    assert escrow.reschedule(ENGINE, "alice", 2).release_epoch == 4
    assert escrow.reschedule(ENGINE, "alice", 9).release_epoch == 9
    with pytest.raises(InsufficientBalance):
        escrow.reschedule(ENGINE, "bob", 9)


def test_escrowed_balance_earns_rebases() -> None:
    ledger, escrow, _clock = _setup(engine_balance=0)
    ledger.mint(ENGINE, ENGINE, 1_000)
    _deposit(ledger, escrow, "alice", 1_000, 1)
    ledger.rebase(ENGINE, 100, 1)

    record = escrow.record_of("alice")
    assert record is not None
    assert record.amount == 1_000
    assert escrow.value_of("alice") == 1_100
    escrow.retrieve(ENGINE, "alice", 1_100)
    assert ledger.balance_of("alice") == 1_100


def test_only_the_engine_moves_funds() -> None:
    ledger, escrow, _clock = _setup()
    _deposit(ledger, escrow, "alice", 100, 1)
    for call in (
        lambda: escrow.deposit("alice", "alice", 1, 1),
        lambda: escrow.retrieve("alice", "alice", 1),
        lambda: escrow.reclaim("alice", "alice", 1),
        lambda: escrow.reschedule("alice", "alice", 2),
    ):
        with pytest.raises(NotPoolCaller):
            call()


@pytest.mark.parametrize("release", ["retrieve", "reclaim"])
def test_closing_a_record_leaves_no_dust_in_the_escrow(release: str) -> None:
    ledger, escrow, _clock = _setup()
    _deposit(ledger, escrow, "alice", 1_000, 1)
    ledger.rebase(ENGINE, 1, 1)

    shares = escrow.record_of("alice").shares
    assert ledger.balance_for_shares(shares - ledger.shares_for_balance(1_000)) == 0
    assert shares % ledger.shares_per_unit != 0

    getattr(escrow, release)(ENGINE, "alice", 1_000)
    assert escrow.record_of("alice") is None
    assert ledger.shares_of(escrow.address) == 0
    recipient = "alice" if release == "retrieve" else ENGINE
    assert ledger.shares_of(recipient) >= shares
