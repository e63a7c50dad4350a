"""
Protocol configuration.

A deployment is described by one `ProtocolConfig`, built either in code or
from a YAML document:

    schema: stakeflow/protocol/v1
    base_symbol: TKN
    receipt_symbol: sTKN
    staking:
      epoch_length: 100
      first_epoch_number: 1
      warmup_period: 0
      request_window_blocks: null
    reserve:
      fee_bps: 0
      max_fee_bps: 2500
      minimum_liquidity: 1000000000000000
    pool:
      cycle_duration: 6400
      first_cycle_index: 1

Every section and key is optional; unknown keys are rejected (fail-closed).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from ..core.reserve import ReserveConfig
from ..core.staking import StakingConfig

SCHEMA = "stakeflow/protocol/v1"


class ConfigError(ValueError):
    """Raised when a configuration document is malformed."""


@dataclass(frozen=True)
class PoolConfig:
    cycle_duration: int = 6_400
    first_cycle_index: int = 1

    def __post_init__(self) -> None:
        for name, v in (("cycle_duration", self.cycle_duration), ("first_cycle_index", self.first_cycle_index)):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.cycle_duration == 0:
            raise ValueError("cycle_duration must be positive")


@dataclass(frozen=True)
class ProtocolConfig:
    staking: StakingConfig = field(default_factory=StakingConfig)
    reserve: ReserveConfig = field(default_factory=ReserveConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    base_symbol: str = "TKN"
    receipt_symbol: str = "sTKN"

    def __post_init__(self) -> None:
        for name, v in (("base_symbol", self.base_symbol), ("receipt_symbol", self.receipt_symbol)):
            if not isinstance(v, str) or not v.strip():
                raise ValueError(f"{name} must be a non-empty string")
        if self.base_symbol == self.receipt_symbol:
            raise ValueError("base_symbol and receipt_symbol must differ")
        if (
            self.staking.request_window_blocks is not None
            and self.staking.request_window_blocks > self.pool.cycle_duration
        ):
            raise ValueError("request_window_blocks must not exceed the pool cycle_duration")


def _require_mapping(obj: Any, *, name: str) -> dict[str, Any]:
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ConfigError(f"{name} must be a mapping")
    return obj


def _build_section(cls: type, obj: Any, *, name: str) -> Any:
    data = _require_mapping(obj, name=name)
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"{name}: unknown keys {unknown}")
    try:
        return cls(**data)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name}: {exc}") from exc


def protocol_config_from_mapping(obj: Mapping[str, Any]) -> ProtocolConfig:
    root = _require_mapping(obj, name="config")
    allowed = {"schema", "base_symbol", "receipt_symbol", "staking", "reserve", "pool"}
    unknown = sorted(set(root) - allowed)
    if unknown:
        raise ConfigError(f"config: unknown keys {unknown}")

    schema = root.get("schema", SCHEMA)
    if schema != SCHEMA:
        raise ConfigError(f"unsupported config schema: {schema}")

    kwargs: dict[str, Any] = {
        "staking": _build_section(StakingConfig, root.get("staking"), name="staking"),
        "reserve": _build_section(ReserveConfig, root.get("reserve"), name="reserve"),
        "pool": _build_section(PoolConfig, root.get("pool"), name="pool"),
    }
    for key in ("base_symbol", "receipt_symbol"):
        if key in root:
            kwargs[key] = root[key]
    try:
        return ProtocolConfig(**kwargs)
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc


def load_protocol_config(path: Union[str, Path], *, default: Optional[ProtocolConfig] = None) -> ProtocolConfig:
    """Read a YAML config file. A missing file yields `default` when one is given."""
    p = Path(path)
    if not p.exists():
        if default is not None:
            return default
        raise ConfigError(f"config file not found: {p}")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {p}: {exc}") from exc
    return protocol_config_from_mapping(_require_mapping(raw, name="config"))
