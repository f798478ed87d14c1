"""Pure arithmetic for the range liquidation engine.

Every function is stateless and operates on plain Python ints, except the
price/tick mapping which goes through ``math.log`` on floats.

Rounding is always explicit: integer division uses ``//`` (floor toward -inf)
and the ``round_up`` variants use a negated floor.
"""

from __future__ import annotations

import math

# Domain constants
TICK_BASE: float = 1.0001
LOG_TICK_BASE: float = math.log(TICK_BASE)
MIN_TICK: int = -887272
MAX_TICK: int = 887272
BPS_SCALE: int = 10_000
SECONDS_PER_YEAR: int = 365 * 24 * 60 * 60
MAX_AMOUNT: int = 2**256 - 1


# -- Integer helpers ---------------------------------------------------------

def ceil_div(a: int, b: int) -> int:
    """``ceil(a / b)`` for positive ``b``."""
    if b <= 0:
        raise ValueError(f"divisor must be positive: {b}")
    return -((-a) // b)


def mul_div(a: int, b: int, denominator: int, *, round_up: bool = False) -> int:
    """``a * b / denominator`` with floor (default) or ceil rounding."""
    if denominator <= 0:
        raise ValueError(f"denominator must be positive: {denominator}")
    if round_up:
        return ceil_div(a * b, denominator)
    return (a * b) // denominator


def clamp(x: int, lo: int, hi: int) -> int:
    if lo > hi:
        raise ValueError(f"empty clamp interval [{lo}, {hi}]")
    return lo if x < lo else hi if x > hi else x


def saturating_add(a: int, b: int, limit: int = MAX_AMOUNT) -> tuple[int, bool]:
    """Return ``(min(a + b, limit), saturated)`` for non-negative inputs."""
    total = a + b
    if total > limit:
        return limit, True
    return total, False


def bps_of(amount: int, bps: int) -> int:
    """``floor(amount * bps / 10000)``."""
    return (amount * bps) // BPS_SCALE


# -- Tick helpers ------------------------------------------------------------

def in_tick_domain(tick: int) -> bool:
    return MIN_TICK <= tick <= MAX_TICK


def align_tick(tick: int, spacing: int, *, round_up: bool) -> int:
    """Round ``tick`` to a multiple of ``spacing`` (ceil if ``round_up`` else floor)."""
    if spacing <= 0:
        raise ValueError(f"spacing must be positive: {spacing}")
    if round_up:
        return ceil_div(tick, spacing) * spacing
    return (tick // spacing) * spacing


def min_aligned_tick(spacing: int) -> int:
    return align_tick(MIN_TICK, spacing, round_up=True)


def max_aligned_tick(spacing: int) -> int:
    return align_tick(MAX_TICK, spacing, round_up=False)


def tick_to_price(tick: int) -> float:
    """``1.0001 ** tick`` (token1 per token0)."""
    return math.exp(tick * LOG_TICK_BASE)


def ratio_to_tick_offset(ratio: float, *, round_up: bool = False) -> int:
    """Number of ticks that multiplies a price by ``ratio``.

    Exact logarithmic mapping ``log(ratio) / log(1.0001)``, rounded down or up.
    Monotonic in ``ratio`` and exactly 0 at ``ratio == 1``.
    """
    if not ratio > 0.0 or math.isinf(ratio):
        raise ValueError(f"ratio must be positive and finite: {ratio}")
    if ratio == 1.0:
        return 0
    offset = math.log(ratio) / LOG_TICK_BASE
    return math.ceil(offset) if round_up else math.floor(offset)


def price_to_tick(price: float, *, round_up: bool = False) -> int:
    """Tick whose price is at or below ``price`` (at or above with ``round_up``)."""
    return ratio_to_tick_offset(price, round_up=round_up)
