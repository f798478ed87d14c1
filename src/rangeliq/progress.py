"""Liquidation progress and the ratchet rule.

Depth is measured in ticks from the trigger edge toward the far edge::

    token0 collateral: depth = tick_upper - tick
    token1 collateral: depth = tick - tick_lower

``target = initial * clamp(depth, 0, width) // width`` and the step delta is
``max(0, target - already_liquidated)``. A retreat toward the trigger edge
lowers the target but never produces a negative delta.

Pacing (``max_chunk_bps``, ``min_chunk_amount``, ``min_liquidation_interval``)
can hold back part of a delta. It never applies once the far edge is reached,
so full progress always liquidates the exact remainder.
"""

from __future__ import annotations

from fractions import Fraction

from .config import LiquidationConfig
from .tick_math import BPS_SCALE, bps_of, clamp
from .types import Position


def depth_ticks(position: Position, tick: int) -> int:
    """Ticks travelled past the trigger edge, clamped to ``[0, width]``."""
    if position.direction.liquidates_downward:
        raw = position.tick_upper - tick
    else:
        raw = tick - position.tick_lower
    return clamp(raw, 0, position.width)


def progress(position: Position, tick: int) -> Fraction:
    """Target liquidated fraction of the initial collateral, in ``[0, 1]``."""
    return Fraction(depth_ticks(position, tick), position.width)


def progress_bps(position: Position, tick: int) -> int:
    return (depth_ticks(position, tick) * BPS_SCALE) // position.width


def is_past_trigger(position: Position, tick: int) -> bool:
    """True once ``tick`` has reached the trigger edge, in band or beyond the far edge."""
    if position.direction.liquidates_downward:
        return tick <= position.tick_upper
    return tick >= position.tick_lower


def is_fully_progressed(position: Position, tick: int) -> bool:
    return depth_ticks(position, tick) == position.width


def target_liquidated(position: Position, tick: int) -> int:
    return (position.initial_collateral * depth_ticks(position, tick)) // position.width


def raw_delta(position: Position, tick: int) -> int:
    return max(0, target_liquidated(position, tick) - position.liquidated_collateral)


def liquidation_delta(position: Position, tick: int, now: int, config: LiquidationConfig) -> int:
    """Collateral to liquidate in this step, after pacing."""
    delta = raw_delta(position, tick)
    if delta == 0 or is_fully_progressed(position, tick):
        return delta

    if (
        config.min_liquidation_interval > 0
        and position.liquidated_collateral > 0
        and now - position.last_liquidation_timestamp < config.min_liquidation_interval
    ):
        return 0

    chunk_cap = max(1, bps_of(position.initial_collateral, config.max_chunk_bps))
    delta = min(delta, chunk_cap, position.remaining_collateral)
    if delta < config.min_chunk_amount:
        return 0
    return delta


def debt_repaid_for(position: Position, delta: int) -> int:
    """Debt retired by liquidating ``delta`` collateral, pro rata to what remains."""
    if delta < 0 or delta > position.remaining_collateral:
        raise ValueError(f"delta out of range: {delta}")
    if delta == 0:
        return 0
    if delta == position.remaining_collateral:
        return position.remaining_debt
    return (position.remaining_debt * delta) // position.remaining_collateral
