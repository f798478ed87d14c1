"""Loan terms to liquidation band.

``compute_band`` converts (collateral, debt, threshold, direction) at the
current tick into ``[tick_lower, tick_upper]``.

The computation runs in the collateral-price coordinate ``q``: ``q = tick``
when token0 is collateral, ``q = -tick`` when token1 is. A higher ``q`` means
the collateral is worth more debt, so the band always sits below the opening
``q`` and both boundaries round up (toward the opening price). That keeps the
trigger from firing later than the exact threshold price and the full edge
from sitting past the exact fair-value price.
"""

from __future__ import annotations

import logging
import math

from .config import LiquidationConfig
from .errors import InvalidAmount, InvalidRange, InvalidThreshold
from .tick_math import (
    BPS_SCALE,
    align_tick,
    ceil_div,
    clamp,
    in_tick_domain,
    max_aligned_tick,
    min_aligned_tick,
    mul_div,
    ratio_to_tick_offset,
    tick_to_price,
)
from .types import Band, Direction

logger = logging.getLogger(__name__)


def max_debt_with_growth(debt: int, config: LiquidationConfig) -> int:
    """Debt inflated once by the fixed rate and fee buffer (rounded up)."""
    growth_bps = BPS_SCALE + config.base_interest_rate_bps + config.fee_buffer_bps
    return mul_div(debt, growth_bps, BPS_SCALE, round_up=True)


def _to_q(tick: int, direction: Direction) -> int:
    return tick if direction.liquidates_downward else -tick


def compute_band(
    current_tick: int,
    collateral: int,
    debt: int,
    threshold_bps: int,
    direction: Direction,
    config: LiquidationConfig,
) -> Band:
    """Return the liquidation band for a new position.

    Raises:
        InvalidAmount: collateral or debt not positive.
        InvalidThreshold: threshold outside ``(0, 10000)``.
        InvalidRange: band degenerate, outside the tick domain, or containing
            ``current_tick``.
    """
    if collateral <= 0:
        raise InvalidAmount(f"collateral must be positive: {collateral}")
    if debt <= 0:
        raise InvalidAmount(f"debt must be positive: {debt}")
    if not (0 < threshold_bps < BPS_SCALE):
        raise InvalidThreshold(f"threshold_bps must be in (0, {BPS_SCALE}): {threshold_bps}")
    if not in_tick_domain(current_tick):
        raise InvalidRange(f"current tick outside domain: {current_tick}")

    spacing = config.tick_spacing
    max_debt = max_debt_with_growth(debt, config)
    q = _to_q(current_tick, direction)

    collateral_value = collateral * tick_to_price(q)
    if not collateral_value > 0.0 or math.isinf(collateral_value):
        raise InvalidRange(f"collateral value not representable at tick {current_tick}")

    full_ratio = max_debt / collateral_value
    trigger_ratio = full_ratio * BPS_SCALE / threshold_bps
    if trigger_ratio >= 1.0:
        raise InvalidRange("loan is already past its liquidation threshold at the current tick")

    trigger_q = align_tick(q + ratio_to_tick_offset(trigger_ratio, round_up=True), spacing, round_up=True)
    full_q = align_tick(q + ratio_to_tick_offset(full_ratio, round_up=True), spacing, round_up=True)

    expanded = False
    width = trigger_q - full_q
    if width < config.min_band_width_ticks:
        pad = align_tick(ceil_div(config.min_band_width_ticks - width, 2), spacing, round_up=True)
        full_q -= pad
        trigger_q += pad
        expanded = True

    lo_dom = min_aligned_tick(spacing)
    hi_dom = max_aligned_tick(spacing)
    clamped_full = clamp(full_q, lo_dom, hi_dom)
    clamped_trigger = clamp(trigger_q, lo_dom, hi_dom)
    clamped = (clamped_full, clamped_trigger) != (full_q, trigger_q)

    if direction.liquidates_downward:
        tick_lower, tick_upper = clamped_full, clamped_trigger
        trigger_tick, full_tick = tick_upper, tick_lower
    else:
        tick_lower, tick_upper = -clamped_trigger, -clamped_full
        trigger_tick, full_tick = tick_lower, tick_upper

    if tick_lower >= tick_upper:
        raise InvalidRange(f"degenerate band [{tick_lower}, {tick_upper}]")
    if tick_lower <= current_tick <= tick_upper:
        raise InvalidRange(
            f"band [{tick_lower}, {tick_upper}] contains current tick {current_tick}"
        )

    logger.debug(
        "band direction=%s tick=%d -> [%d, %d] max_debt=%d expanded=%s clamped=%s",
        direction.value, current_tick, tick_lower, tick_upper, max_debt, expanded, clamped,
    )
    return Band(
        tick_lower=tick_lower,
        tick_upper=tick_upper,
        max_debt=max_debt,
        trigger_tick=trigger_tick,
        full_tick=full_tick,
        expanded=expanded,
        clamped=clamped,
    )
