"""Tests for rangeliq/invariants.py."""

from dataclasses import replace

from rangeliq.config import LiquidationConfig
from rangeliq.invariants import (
    MARKET_INVARIANTS,
    POSITION_INVARIANTS,
    check_all,
    check_position,
    is_desync,
)
from rangeliq.lifecycle import PositionLifecycleManager
from rangeliq.market import new_market
from rangeliq.types import Direction, PositionState

CFG = LiquidationConfig(base_interest_rate_bps=0, fee_buffer_bps=0)


def _market_with_position():
    market = new_market(76_012)
    manager = PositionLifecycleManager(CFG)
    pid = manager.open(market, "alice", 10**18, 1000 * 10**18, Direction.TOKEN0, 8000, now=0)
    return market, pid


class TestPositionInvariants:
    def test_fresh_position_passes(self):
        market, pid = _market_with_position()
        assert check_position(market.store.get(pid), CFG) == []

    def test_each_invariant_detects_its_breach(self):
        market, pid = _market_with_position()
        p = market.store.get(pid)
        cases = {
            "inv_collateral_bounded": replace(p, remaining_collateral=p.initial_collateral + 1),
            "inv_debt_bounded": replace(p, remaining_debt=-1),
            "inv_band_ordered": replace(p, tick_lower=p.tick_upper),
            "inv_band_aligned": replace(p, tick_lower=p.tick_lower + 1),
            "inv_band_in_domain": replace(p, tick_lower=-900_000),
            "inv_empty_means_closed": replace(
                p, remaining_collateral=0, state=PositionState.PARTIALLY_LIQUIDATED
            ),
            "inv_penalty_nonneg": replace(p, accumulated_penalty=-1),
            "inv_untouched_until_liquidated": replace(p, remaining_collateral=p.initial_collateral - 1),
        }
        assert set(cases) == set(POSITION_INVARIANTS)
        for inv_id, broken in cases.items():
            assert inv_id in check_position(broken, CFG), inv_id


class TestMarketInvariants:
    def test_clean_market(self):
        market, _ = _market_with_position()
        assert check_all(market, CFG) == []

    def test_unregistered_active_position(self):
        market, pid = _market_with_position()
        market.registry.remove(pid)
        violations = check_all(market, CFG)
        assert "inv_active_registered" in violations
        assert is_desync(violations)

    def test_dangling_registry_id(self):
        market, _ = _market_with_position()
        market.registry.insert(42, 0, 60, Direction.TOKEN1)
        violations = check_all(market, CFG)
        assert "inv_no_dangling_ids" in violations
        assert is_desync(violations)

    def test_band_mismatch(self):
        market, pid = _market_with_position()
        p = market.store.get(pid)
        market.store.put(replace(p, tick_upper=p.tick_upper + 60))
        assert "inv_active_registered" in check_all(market, CFG)

    def test_accrual_from_future(self):
        market, pid = _market_with_position()
        p = market.store.get(pid)
        market.store.put(replace(p, last_accrual_timestamp=500))
        violations = check_all(market, CFG)
        assert violations == ["inv_accrual_not_from_future"]
        assert not is_desync(violations)

    def test_position_violations_carry_id(self):
        market, pid = _market_with_position()
        p = market.store.get(pid)
        market.store.put(replace(p, accumulated_penalty=-3))
        assert f"inv_penalty_nonneg:{pid}" in check_all(market, CFG)

    def test_registry_names(self):
        assert set(MARKET_INVARIANTS) == {
            "inv_registry_consistent",
            "inv_active_registered",
            "inv_no_dangling_ids",
            "inv_accrual_not_from_future",
        }
