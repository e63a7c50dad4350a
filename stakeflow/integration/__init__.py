"""
Integration layer: external pool boundary, configuration, deployment
"""

from .config import ConfigError, PoolConfig, ProtocolConfig, load_protocol_config, protocol_config_from_mapping
from .deployment import Deployment, advance_to_next_cycle, deploy_protocol, mine_to_cycle_end, mine_to_epoch_end
from .yield_pool import ExternalYieldPool, SimulatedYieldPool, WithdrawalRequest

__all__ = [
    "ConfigError",
    "PoolConfig",
    "ProtocolConfig",
    "load_protocol_config",
    "protocol_config_from_mapping",
    "Deployment",
    "advance_to_next_cycle",
    "deploy_protocol",
    "mine_to_cycle_end",
    "mine_to_epoch_end",
    "ExternalYieldPool",
    "SimulatedYieldPool",
    "WithdrawalRequest",
]
