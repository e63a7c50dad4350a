"""
Protocol deployment and clock helpers.

`deploy_protocol` builds every component on a chain, performs the two-phase
wiring and seeds the liquidity reserve, all in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..access import Capability
from ..core.escrow import VestingEscrow
from ..core.invariants import check_all
from ..core.reserve import LiquidityReserve
from ..core.staking import StakingEngine
from ..state.chain import Address, Chain, require_address
from ..state.ledger import ElasticLedger
from ..state.tokens import TokenLedger
from .config import ProtocolConfig
from .yield_pool import SimulatedYieldPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deployment:
    chain: Chain
    config: ProtocolConfig
    admin: Address
    owner: Capability
    pool_owner: Capability
    token: TokenLedger
    ledger: ElasticLedger
    pool: SimulatedYieldPool
    engine: StakingEngine
    warmup: VestingEscrow
    cooldown: VestingEscrow
    reserve: LiquidityReserve

    def check_invariants(self) -> list[str]:
        return check_all(self.engine)


def deploy_protocol(
    chain: Chain,
    config: Optional[ProtocolConfig] = None,
    admin: Address = "admin",
    *,
    pool_admin: Optional[Address] = None,
    mint_seed: bool = True,
) -> Deployment:
    """
    Construct, wire and seed a full protocol.

    The reserve seed (`config.reserve.minimum_liquidity`) is pulled from
    `admin`; with `mint_seed` it is minted to `admin` first.
    """
    config = config or ProtocolConfig()
    require_address(admin, name="admin")

    with chain.transaction():
        owner = Capability(chain, admin, name="protocol-owner")
        pool_owner = Capability(chain, pool_admin or admin, name="pool-owner")
        token = TokenLedger(chain, config.base_symbol)
        ledger = ElasticLedger(chain, owner, config.receipt_symbol)
        pool = SimulatedYieldPool(
            chain,
            pool_owner,
            token,
            cycle_duration=config.pool.cycle_duration,
            first_cycle_index=config.pool.first_cycle_index,
        )
        engine = StakingEngine(chain, owner, token, ledger, pool, config.staking)
        warmup = VestingEscrow(chain, owner, ledger, name="warmup")
        cooldown = VestingEscrow(chain, owner, ledger, name="cooldown")
        reserve = LiquidityReserve(chain, owner, token, config.reserve)

        ledger.initialize(admin, engine.address)
        warmup.initialize(admin, engine.address, lambda: engine.epoch.number)
        cooldown.initialize(admin, engine.address, pool.current_cycle_index)
        engine.wire(admin, warmup, cooldown, reserve)

        seed = config.reserve.minimum_liquidity
        if mint_seed:
            token.mint(admin, seed)
        token.approve(admin, reserve.address, seed)
        reserve.initialize(admin, engine, ledger)

    logger.info(
        "protocol deployed at block %d: epoch %d ends at %d, pool cycle %d",
        chain.block_number,
        engine.epoch.number,
        engine.epoch.end_block,
        pool.current_cycle_index(),
    )
    return Deployment(
        chain=chain,
        config=config,
        admin=admin,
        owner=owner,
        pool_owner=pool_owner,
        token=token,
        ledger=ledger,
        pool=pool,
        engine=engine,
        warmup=warmup,
        cooldown=cooldown,
        reserve=reserve,
    )


def advance_to_next_cycle(deployment: Deployment, pool_owner: Optional[Address] = None) -> int:
    """Mine to the end of the current pool cycle and roll the pool over. Returns the new cycle index."""
    pool = deployment.pool
    deployment.chain.mine_to(pool.next_cycle_start())
    return pool.complete_rollover(pool_owner or deployment.pool_owner.holder or deployment.admin)


def mine_to_cycle_end(deployment: Deployment) -> int:
    """Mine to the last block of the current pool cycle without rolling over."""
    return deployment.chain.mine_to(deployment.pool.next_cycle_start())


def mine_to_epoch_end(deployment: Deployment) -> int:
    """Mine to the end block of the engine's current epoch."""
    return deployment.chain.mine_to(deployment.engine.epoch.end_block)
