"""Invariant checkers for a market.

Per-position invariants take ``(position, config)``; market invariants take
``(market, config)``. ``check_all()`` returns the violated invariant ids
(empty = all pass), suffixed with ``:<position id>`` for per-position ones.
"""

from __future__ import annotations

from typing import Callable

from .config import LiquidationConfig
from .market import Market
from .tick_math import in_tick_domain
from .types import Position, PositionState


# -- per-position ------------------------------------------------------------

def inv_collateral_bounded(p: Position, config: LiquidationConfig) -> bool:
    return 0 <= p.remaining_collateral <= p.initial_collateral


def inv_debt_bounded(p: Position, config: LiquidationConfig) -> bool:
    return 0 <= p.remaining_debt <= p.debt_principal


def inv_band_ordered(p: Position, config: LiquidationConfig) -> bool:
    return p.tick_lower < p.tick_upper


def inv_band_aligned(p: Position, config: LiquidationConfig) -> bool:
    return p.tick_lower % config.tick_spacing == 0 and p.tick_upper % config.tick_spacing == 0


def inv_band_in_domain(p: Position, config: LiquidationConfig) -> bool:
    return in_tick_domain(p.tick_lower) and in_tick_domain(p.tick_upper)


def inv_empty_means_closed(p: Position, config: LiquidationConfig) -> bool:
    if p.remaining_collateral != 0:
        return True
    return p.state is PositionState.CLOSED


def inv_penalty_nonneg(p: Position, config: LiquidationConfig) -> bool:
    return p.accumulated_penalty >= 0 and p.total_penalty_paid >= 0


def inv_untouched_until_liquidated(p: Position, config: LiquidationConfig) -> bool:
    if p.state in (PositionState.HEALTHY, PositionState.UNDERWATER):
        return p.remaining_collateral == p.initial_collateral
    return True


POSITION_INVARIANTS: dict[str, Callable[[Position, LiquidationConfig], bool]] = {
    "inv_collateral_bounded": inv_collateral_bounded,
    "inv_debt_bounded": inv_debt_bounded,
    "inv_band_ordered": inv_band_ordered,
    "inv_band_aligned": inv_band_aligned,
    "inv_band_in_domain": inv_band_in_domain,
    "inv_empty_means_closed": inv_empty_means_closed,
    "inv_penalty_nonneg": inv_penalty_nonneg,
    "inv_untouched_until_liquidated": inv_untouched_until_liquidated,
}


# -- market ------------------------------------------------------------------

def inv_registry_consistent(m: Market, config: LiquidationConfig) -> bool:
    return not m.registry.verify()


def inv_active_registered(m: Market, config: LiquidationConfig) -> bool:
    for p in m.store.values():
        if not p.is_active:
            continue
        if p.id not in m.registry:
            return False
        if m.registry.band_of(p.id) != (p.tick_lower, p.tick_upper, p.direction):
            return False
    return True


def inv_no_dangling_ids(m: Market, config: LiquidationConfig) -> bool:
    for pid in m.registry.active_ids():
        p = m.store.get(pid)
        if p is None or not p.is_active:
            return False
    return True


def inv_accrual_not_from_future(m: Market, config: LiquidationConfig) -> bool:
    return all(p.last_accrual_timestamp <= m.last_event_time for p in m.store.values())


MARKET_INVARIANTS: dict[str, Callable[[Market, LiquidationConfig], bool]] = {
    "inv_registry_consistent": inv_registry_consistent,
    "inv_active_registered": inv_active_registered,
    "inv_no_dangling_ids": inv_no_dangling_ids,
    "inv_accrual_not_from_future": inv_accrual_not_from_future,
}

# Violations that mean the registry and the store disagree.
DESYNC_INVARIANTS: frozenset[str] = frozenset(
    {"inv_registry_consistent", "inv_active_registered", "inv_no_dangling_ids"}
)


def check_position(p: Position, config: LiquidationConfig) -> list[str]:
    return [inv_id for inv_id, fn in POSITION_INVARIANTS.items() if not fn(p, config)]


def check_all(market: Market, config: LiquidationConfig) -> list[str]:
    """Return violated invariant ids (empty = all pass)."""
    violations = [inv_id for inv_id, fn in MARKET_INVARIANTS.items() if not fn(market, config)]
    for p in market.store.values():
        violations.extend(f"{inv_id}:{p.id}" for inv_id in check_position(p, config))
    return violations


def is_desync(violations: list[str]) -> bool:
    return any(v.split(":", 1)[0] in DESYNC_INVARIANTS for v in violations)
