"""Engine configuration.

``LiquidationConfig`` is injected once per market and is not meant to change
while positions are open. It can be built directly, from a plain mapping, or
from a YAML file.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError
from .tick_math import BPS_SCALE, MAX_TICK


@dataclass(frozen=True)
class LiquidationConfig:
    """Policy constants for one market."""

    # Debt growth buffer applied once when the band is computed.
    base_interest_rate_bps: int = 500
    fee_buffer_bps: int = 100

    # Annualized penalty while underwater.
    base_penalty_rate_bps: int = 1000
    penalty_rate_slope_bps: int = 5000

    # Penalty split.
    lp_share_bps: int = 9000
    price_taker_share_bps: int = 1000

    # Band geometry.
    tick_spacing: int = 60
    min_band_width_ticks: int = 120
    threshold_bps_range: tuple[int, int] = (5000, 9900)

    # Liquidation pacing (defaults: liquidate the full delta every update).
    max_chunk_bps: int = BPS_SCALE
    min_chunk_amount: int = 0
    min_liquidation_interval: int = 0

    # Asset identifiers passed to the sink.
    token0_asset: str = "token0"
    token1_asset: str = "token1"

    # Raise on registry/store desync instead of halting the market.
    strict_invariants: bool = False

    def __post_init__(self) -> None:
        for name in (
            "base_interest_rate_bps",
            "fee_buffer_bps",
            "base_penalty_rate_bps",
            "penalty_rate_slope_bps",
            "lp_share_bps",
            "price_taker_share_bps",
            "tick_spacing",
            "min_band_width_ticks",
            "max_chunk_bps",
            "min_chunk_amount",
            "min_liquidation_interval",
        ):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool):
                raise ConfigError(f"{name} must be an int")
            if v < 0:
                raise ConfigError(f"{name} must be non-negative: {v}")

        if self.lp_share_bps + self.price_taker_share_bps != BPS_SCALE:
            raise ConfigError(
                f"lp_share_bps + price_taker_share_bps must equal {BPS_SCALE}, "
                f"got {self.lp_share_bps + self.price_taker_share_bps}"
            )
        if not (0 < self.tick_spacing <= MAX_TICK):
            raise ConfigError(f"tick_spacing must be in (0, {MAX_TICK}]: {self.tick_spacing}")
        if self.min_band_width_ticks % self.tick_spacing != 0:
            raise ConfigError("min_band_width_ticks must be a multiple of tick_spacing")
        if self.min_band_width_ticks < 2 * self.tick_spacing:
            raise ConfigError("min_band_width_ticks must be at least two tick_spacings")
        if not (0 < self.max_chunk_bps <= BPS_SCALE):
            raise ConfigError(f"max_chunk_bps must be in (0, {BPS_SCALE}]: {self.max_chunk_bps}")

        lo, hi = self.threshold_bps_range
        if not (0 < lo <= hi < BPS_SCALE):
            raise ConfigError(f"threshold_bps_range must satisfy 0 < lo <= hi < {BPS_SCALE}: {(lo, hi)}")

        if self.token0_asset == self.token1_asset:
            raise ConfigError("token0_asset and token1_asset must differ")

    def threshold_allowed(self, threshold_bps: int) -> bool:
        lo, hi = self.threshold_bps_range
        return lo <= threshold_bps <= hi


CONFIG_FIELD_NAMES: tuple[str, ...] = tuple(f.name for f in fields(LiquidationConfig))


def config_from_dict(d: Mapping[str, Any]) -> LiquidationConfig:
    """Build a config from a mapping. Unknown keys are rejected; missing keys use defaults."""
    unknown = sorted(set(d) - set(CONFIG_FIELD_NAMES))
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
    kwargs: dict[str, Any] = dict(d)
    if "threshold_bps_range" in kwargs:
        rng = kwargs["threshold_bps_range"]
        if not isinstance(rng, (list, tuple)) or len(rng) != 2:
            raise ConfigError("threshold_bps_range must be a two-element list")
        kwargs["threshold_bps_range"] = (int(rng[0]), int(rng[1]))
    return LiquidationConfig(**kwargs)


def config_to_dict(config: LiquidationConfig) -> dict[str, Any]:
    out = {name: getattr(config, name) for name in CONFIG_FIELD_NAMES}
    out["threshold_bps_range"] = list(config.threshold_bps_range)
    return out


def load_config(path: str | Path) -> LiquidationConfig:
    """Load a config from a YAML file (a mapping, or a mapping under ``config``)."""
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if obj is None:
        return LiquidationConfig()
    if not isinstance(obj, Mapping):
        raise ConfigError("config YAML must be a mapping")
    if "config" in obj and isinstance(obj["config"], Mapping):
        obj = obj["config"]
    return config_from_dict(obj)
