"""Penalty split between liquidity providers and the price taker.

The liquidity-provider share is floored; the price taker receives the exact
remainder, so the two amounts always sum to the accumulated penalty.
"""

from __future__ import annotations

from dataclasses import replace

from .config import LiquidationConfig
from .tick_math import MAX_AMOUNT, bps_of, saturating_add
from .types import DistributionResult, Position


def split_penalty(amount: int, config: LiquidationConfig) -> DistributionResult:
    if amount < 0:
        raise ValueError(f"penalty must be non-negative: {amount}")
    to_lp = bps_of(amount, config.lp_share_bps)
    return DistributionResult(to_liquidity_providers=to_lp, to_price_taker=amount - to_lp)


def distribute(position: Position, config: LiquidationConfig) -> tuple[DistributionResult, Position]:
    """Split ``accumulated_penalty`` and reset it to 0 on the returned position."""
    result = split_penalty(position.accumulated_penalty, config)
    paid, _ = saturating_add(position.total_penalty_paid, result.total, MAX_AMOUNT)
    return result, replace(position, accumulated_penalty=0, total_penalty_paid=paid)
