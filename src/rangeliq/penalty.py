"""Time-weighted penalty accrual while a position is underwater.

The penalty rate is annualized in bps and grows with the liquidation
threshold: a higher threshold leaves liquidity providers a thinner buffer.

``accrue`` must run before every progress/liquidation computation. The tick it
receives is the tick that was in force over ``[last_accrual_timestamp, now]``.
Out-of-band time is never charged, not even retroactively.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .config import LiquidationConfig
from .errors import ArithmeticSaturation, OutOfOrderUpdate
from .tick_math import BPS_SCALE, MAX_AMOUNT, SECONDS_PER_YEAR, saturating_add
from .types import AccrualResult, Position

logger = logging.getLogger(__name__)

RATE_KINK_BPS: int = 5000


def penalty_rate_bps(threshold_bps: int, config: LiquidationConfig) -> int:
    """Annualized penalty rate for a threshold."""
    excess = max(0, threshold_bps - RATE_KINK_BPS)
    return config.base_penalty_rate_bps + (excess * config.penalty_rate_slope_bps) // BPS_SCALE


def penalty_for(remaining_collateral: int, rate_bps: int, elapsed: int) -> int:
    """``floor(remaining * rate * elapsed / (10000 * year))``."""
    return (remaining_collateral * rate_bps * elapsed) // (BPS_SCALE * SECONDS_PER_YEAR)


def accrue(position: Position, tick: int, now: int, config: LiquidationConfig) -> AccrualResult:
    """Charge the penalty for time spent in band since the last accrual.

    Raises:
        OutOfOrderUpdate: ``now`` is earlier than the last accrual.
    """
    if now < position.last_accrual_timestamp:
        raise OutOfOrderUpdate(
            f"position {position.id}: now={now} < last_accrual={position.last_accrual_timestamp}"
        )
    if not position.contains(tick) or position.remaining_collateral == 0:
        return AccrualResult(position=replace(position, last_accrual_timestamp=now))

    elapsed = now - position.last_accrual_timestamp
    charge = penalty_for(
        position.remaining_collateral,
        penalty_rate_bps(position.liquidation_threshold_bps, config),
        elapsed,
    )
    total, saturated = saturating_add(position.accumulated_penalty, charge, MAX_AMOUNT)
    if saturated:
        logger.warning(
            "%s: penalty for position %d clamped to MAX_AMOUNT",
            ArithmeticSaturation.__name__, position.id,
        )
    return AccrualResult(
        position=replace(position, accumulated_penalty=total, last_accrual_timestamp=now),
        charged=total - position.accumulated_penalty,
        saturated=saturated,
    )
