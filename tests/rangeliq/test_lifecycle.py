"""Tests for rangeliq/lifecycle.py — open, price updates, repay, queries."""

import logging
from dataclasses import replace

import pytest

from rangeliq.config import LiquidationConfig
from rangeliq.effects import (
    CreditLiquidityProviders,
    CreditPriceTaker,
    NotifyLiquidation,
    RecordingSink,
    ReturnCollateral,
)
from rangeliq.errors import (
    InvalidAmount,
    InvalidRange,
    InvalidThreshold,
    MarketHalted,
    OutOfOrderUpdate,
    PositionNotActive,
    RegistryDesyncError,
    Unauthorized,
)
from rangeliq.invariants import check_all
from rangeliq.lifecycle import PositionLifecycleManager
from rangeliq.market import new_market
from rangeliq.tick_math import SECONDS_PER_YEAR
from rangeliq.types import BorrowRequest, Direction, PositionState, PriceUpdate, RepayRequest

UNIT = 10**18
DAY = 86_400
OPEN_TICK = 76_012       # price 2000
TICK_1200 = 70_904
TICK_1150 = 70_478
TICK_900 = 68_027
LOWER, UPPER = 69_120, 71_340
WIDTH = UPPER - LOWER
RATE_BPS = 2500          # penalty rate at 80% threshold with default curve


def _cfg(**kwargs) -> LiquidationConfig:
    kwargs.setdefault("base_interest_rate_bps", 0)
    kwargs.setdefault("fee_buffer_bps", 0)
    return LiquidationConfig(**kwargs)


def _charge(remaining: int, seconds: int) -> int:
    return (remaining * RATE_BPS * seconds) // (10_000 * SECONDS_PER_YEAR)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def manager(sink) -> PositionLifecycleManager:
    return PositionLifecycleManager(_cfg(), sink)


@pytest.fixture
def market():
    return new_market(OPEN_TICK)


def _open(manager, market, owner="alice", now=0, direction=Direction.TOKEN0) -> int:
    return manager.open(market, owner, UNIT, 1000 * UNIT, direction, 8000, now=now)


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------

class TestOpen:
    def test_opens_healthy_and_registered(self, manager, market):
        pid = _open(manager, market)
        p = manager.get_position(market, pid)
        assert pid == 1
        assert p.state is PositionState.HEALTHY
        assert (p.tick_lower, p.tick_upper) == (LOWER, UPPER)
        assert p.remaining_collateral == UNIT
        assert pid in market.registry
        assert manager.get_active_position_count(market) == 1
        assert not manager.is_underwater(market, pid)
        assert check_all(market, manager.config) == []

    def test_ids_increase(self, manager, market):
        assert [_open(manager, market) for _ in range(3)] == [1, 2, 3]

    def test_borrow_request(self, manager, market):
        req = BorrowRequest(owner="bob", collateral=UNIT, debt=1000 * UNIT, threshold_bps=8000, direction=Direction.TOKEN0)
        pid = manager.borrow(market, req, now=5)
        assert manager.get_position(market, pid).owner == "bob"
        assert market.last_event_time == 5

    @pytest.mark.parametrize("collateral,debt", [(0, 1), (1, 0), (-5, 1), (True, 1)])
    def test_invalid_amounts(self, manager, market, collateral, debt):
        with pytest.raises(InvalidAmount):
            manager.open(market, "alice", collateral, debt, Direction.TOKEN0, 8000, now=0)
        assert len(market.store) == 0

    @pytest.mark.parametrize("threshold", [4999, 9901])
    def test_threshold_outside_policy(self, manager, market, threshold):
        with pytest.raises(InvalidThreshold):
            manager.open(market, "alice", UNIT, UNIT, Direction.TOKEN0, threshold, now=0)

    def test_too_much_debt(self, manager, market):
        with pytest.raises(InvalidRange):
            manager.open(market, "alice", UNIT, 1700 * UNIT, Direction.TOKEN0, 8000, now=0)
        assert len(market.registry) == 0

    def test_empty_owner(self, manager, market):
        with pytest.raises(ValueError):
            manager.open(market, "", UNIT, UNIT, Direction.TOKEN0, 8000, now=0)

    def test_clock_cannot_go_back(self, manager, market):
        _open(manager, market, now=100)
        with pytest.raises(OutOfOrderUpdate):
            _open(manager, market, now=99)

    def test_halted_market_rejects(self, manager, market):
        market.halt("test")
        with pytest.raises(MarketHalted):
            _open(manager, market)


# ---------------------------------------------------------------------------
# Price updates: partial then full liquidation
# ---------------------------------------------------------------------------

class TestLiquidationPath:
    def test_partial_from_opening(self, manager, market, sink):
        pid = _open(manager, market)
        report = manager.on_price_update(market, TICK_1150, now=60)

        delta = UNIT * (UPPER - TICK_1150) // WIDTH
        p = manager.get_position(market, pid)
        assert report.ok
        assert report.collateral_liquidated == delta
        assert p.state is PositionState.PARTIALLY_LIQUIDATED
        assert p.remaining_collateral == UNIT - delta
        assert p.remaining_debt == 1000 * UNIT - 1000 * delta
        # no time was spent in band before this trade
        assert p.total_penalty_paid == 0
        assert manager.get_liquidation_progress(market, pid) == 3882
        assert sink.messages == [NotifyLiquidation(pid, 1000 * delta, delta, False)]

    def test_three_step_path(self, manager, market, sink):
        pid = _open(manager, market)

        manager.on_price_update(market, TICK_1200, now=60)
        d1 = UNIT * (UPPER - TICK_1200) // WIDTH

        r2 = manager.on_price_update(market, TICK_1150, now=60 + DAY, price_taker="bob")
        charge2 = _charge(UNIT - d1, DAY)
        d2 = UNIT * (UPPER - TICK_1150) // WIDTH - d1
        lp2 = charge2 * 9000 // 10_000
        (step2,) = r2.steps
        assert step2.collateral_liquidated == d2
        assert step2.penalty_accrued == charge2
        assert step2.penalty_to_liquidity_providers == lp2
        assert step2.penalty_to_price_taker == charge2 - lp2
        assert step2.state_before is PositionState.PARTIALLY_LIQUIDATED

        r3 = manager.on_price_update(market, TICK_900, now=60 + 2 * DAY, price_taker="carol")
        remaining = UNIT - d1 - d2
        charge3 = _charge(remaining, DAY)
        assert r3.closed == (pid,)
        assert r3.collateral_liquidated == remaining

        p = manager.get_position(market, pid)
        assert p.state is PositionState.CLOSED
        assert p.remaining_collateral == 0
        assert p.remaining_debt == 0
        assert p.accumulated_penalty == 0
        assert p.total_penalty_paid == charge2 + charge3
        assert pid not in market.registry
        assert manager.get_active_position_count(market) == 0
        assert manager.get_liquidation_progress(market, pid) == 10_000

        notes = sink.of_type(NotifyLiquidation)
        assert [n.collateral_liquidated for n in notes] == [d1, d2, remaining]
        assert sum(n.debt_repaid for n in notes) == 1000 * UNIT
        assert notes[-1].fully_liquidated
        assert sink.total(CreditLiquidityProviders) + sink.total(CreditPriceTaker) == charge2 + charge3
        assert {m.recipient for m in sink.of_type(CreditPriceTaker)} == {"bob", "carol"}
        assert check_all(market, manager.config) == []

    def test_filtered_update_past_far_edge_stays_underwater(self, manager, market):
        pid = _open(manager, market)
        manager.on_price_update(market, 71_300, Direction.TOKEN1, now=60)
        assert manager.get_position(market, pid).state is PositionState.UNDERWATER

        manager.on_price_update(market, 60_000, Direction.TOKEN1, now=120)
        p = manager.get_position(market, pid)
        assert p.state is PositionState.UNDERWATER
        assert p.remaining_collateral == UNIT
        assert manager.is_underwater(market, pid)
        assert manager.get_liquidation_progress(market, pid) == 10_000

    def test_filtered_gap_past_far_edge_marks_healthy_position(self, manager, market):
        pid = _open(manager, market)
        manager.on_price_update(market, 60_000, Direction.TOKEN1, now=60)
        assert manager.get_position(market, pid).state is PositionState.UNDERWATER
        assert manager.is_underwater(market, pid)

        manager.on_price_update(market, OPEN_TICK, Direction.TOKEN1, now=120)
        assert manager.get_position(market, pid).state is PositionState.HEALTHY
        assert not manager.is_underwater(market, pid)

    def test_gap_past_band_closes_in_one_step(self, manager, market):
        pid = _open(manager, market)
        report = manager.on_price_update(market, TICK_900, now=60)
        assert report.closed == (pid,)
        assert report.collateral_liquidated == UNIT

    def test_closed_position_ignored_afterwards(self, manager, market):
        _open(manager, market)
        manager.on_price_update(market, TICK_900, now=60)
        report = manager.on_price_update(market, TICK_1200, now=120)
        assert report.steps == ()

    def test_no_price_taker_sends_all_to_lps(self, manager, market, sink):
        _open(manager, market)
        manager.on_price_update(market, TICK_1200, now=0)
        manager.on_price_update(market, TICK_1150, now=DAY)
        charge = _charge(UNIT - UNIT * (UPPER - TICK_1200) // WIDTH, DAY)
        assert sink.of_type(CreditPriceTaker) == []
        assert sink.total(CreditLiquidityProviders) == charge

    def test_token1_mirror(self, manager):
        market = new_market(-OPEN_TICK)
        pid = _open(manager, market, direction=Direction.TOKEN1)
        p = manager.get_position(market, pid)
        assert (p.tick_lower, p.tick_upper) == (-UPPER, -LOWER)

        report = manager.on_price_update(market, -TICK_1200, now=60)
        assert report.collateral_liquidated == UNIT * (UPPER - TICK_1200) // WIDTH
        assert manager.is_underwater(market, pid)

    def test_direction_filter(self, manager, market):
        pid = _open(manager, market)
        report = manager.on_price_update(market, TICK_1200, Direction.TOKEN1, now=60)
        assert report.collateral_liquidated == 0
        # entering the band is still recorded for the filtered-out side
        assert manager.get_position(market, pid).state is PositionState.UNDERWATER
        assert manager.get_position(market, pid).last_accrual_timestamp == 60
        assert market.tick == TICK_1200

        report = manager.apply(market, PriceUpdate(new_tick=TICK_1150, direction=Direction.TOKEN0), now=120)
        assert report.collateral_liquidated == UNIT * (UPPER - TICK_1150) // WIDTH

    def test_tick_outside_domain(self, manager, market):
        with pytest.raises(InvalidRange):
            manager.on_price_update(market, 10**7, now=0)

    def test_clock_cannot_go_back(self, manager, market):
        manager.on_price_update(market, OPEN_TICK, now=50)
        with pytest.raises(OutOfOrderUpdate):
            manager.on_price_update(market, OPEN_TICK, now=49)


# ---------------------------------------------------------------------------
# Ratchet and accrual through the lifecycle
# ---------------------------------------------------------------------------

class TestRatchetAndAccrual:
    def test_retreat_keeps_liquidated_collateral(self, manager, market):
        pid = _open(manager, market)
        manager.on_price_update(market, TICK_1200, now=0)
        after_drop = manager.get_position(market, pid).remaining_collateral

        manager.on_price_update(market, 71_000, now=DAY)
        p = manager.get_position(market, pid)
        assert p.remaining_collateral == after_drop
        assert p.state is PositionState.PARTIALLY_LIQUIDATED
        assert p.accumulated_penalty == _charge(after_drop, DAY)

        manager.on_price_update(market, OPEN_TICK, now=2 * DAY)
        p = manager.get_position(market, pid)
        assert p.remaining_collateral == after_drop
        assert p.state is PositionState.PARTIALLY_LIQUIDATED
        assert p.accumulated_penalty == 2 * _charge(after_drop, DAY)

    def test_out_of_band_time_not_charged(self, manager, market):
        pid = _open(manager, market)
        manager.on_price_update(market, TICK_1200, now=0)
        manager.on_price_update(market, OPEN_TICK, now=DAY)
        charged = manager.get_position(market, pid).accumulated_penalty

        manager.on_price_update(market, OPEN_TICK + 60, now=30 * DAY)
        assert manager.get_position(market, pid).accumulated_penalty == charged

    def test_underwater_and_back(self, sink):
        # pacing holds back anything under one unit, so the position only sits in band
        manager = PositionLifecycleManager(_cfg(min_chunk_amount=UNIT), sink)
        market = new_market(OPEN_TICK)
        pid = _open(manager, market)

        report = manager.on_price_update(market, 71_300, now=0)
        assert report.steps[0].state_after is PositionState.UNDERWATER
        assert manager.is_underwater(market, pid)

        manager.on_price_update(market, OPEN_TICK, now=DAY)
        p = manager.get_position(market, pid)
        assert p.state is PositionState.HEALTHY
        assert p.remaining_collateral == UNIT
        assert p.accumulated_penalty == _charge(UNIT, DAY)
        assert sink.messages == []


# ---------------------------------------------------------------------------
# Repay
# ---------------------------------------------------------------------------

class TestRepay:
    def test_repay_healthy(self, manager, market, sink):
        pid = _open(manager, market)
        returned = manager.repay(market, pid, "alice", now=10)
        assert returned == UNIT
        assert sink.messages == [ReturnCollateral("alice", UNIT, "token0")]
        p = manager.get_position(market, pid)
        assert p.state is PositionState.CLOSED
        assert p.remaining_debt == 0
        assert pid not in market.registry

    def test_penalty_taken_from_returned_collateral(self, sink):
        manager = PositionLifecycleManager(_cfg(min_chunk_amount=UNIT), sink)
        market = new_market(OPEN_TICK)
        pid = _open(manager, market)
        manager.on_price_update(market, 71_000, now=100)
        manager.on_price_update(market, 70_990, now=100 + SECONDS_PER_YEAR)

        returned = manager.repay_request(market, RepayRequest(position_id=pid, caller="alice"), now=100 + SECONDS_PER_YEAR)
        penalty = UNIT * RATE_BPS // 10_000
        assert returned == UNIT - penalty
        assert sink.messages == [
            CreditLiquidityProviders(penalty, "token0"),
            ReturnCollateral("alice", UNIT - penalty, "token0"),
        ]
        assert manager.get_position(market, pid).total_penalty_paid == penalty

    def test_repay_after_partial_liquidation(self, manager, market):
        pid = _open(manager, market)
        manager.on_price_update(market, TICK_1200, now=0)
        left = manager.get_position(market, pid).remaining_collateral
        manager.on_price_update(market, OPEN_TICK, now=0)
        assert manager.repay(market, pid, "alice", now=0) == left

    def test_unknown(self, manager, market):
        with pytest.raises(PositionNotActive):
            manager.repay(market, 7, "alice", now=0)

    def test_wrong_caller(self, manager, market):
        pid = _open(manager, market)
        with pytest.raises(Unauthorized):
            manager.repay(market, pid, "mallory", now=0)
        assert manager.get_position(market, pid).is_active

    def test_penalty_above_collateral_is_forgiven_and_logged(self, sink, caplog):
        manager = PositionLifecycleManager(_cfg(min_chunk_amount=UNIT), sink)
        market = new_market(OPEN_TICK)
        pid = _open(manager, market)
        manager.on_price_update(market, 71_000, now=100)
        manager.on_price_update(market, 70_990, now=100 + 5 * SECONDS_PER_YEAR)
        accrued = manager.get_position(market, pid).accumulated_penalty
        assert accrued == 5 * UNIT * RATE_BPS // 10_000

        with caplog.at_level(logging.WARNING, logger="rangeliq.lifecycle"):
            returned = manager.repay(market, pid, "alice", now=100 + 5 * SECONDS_PER_YEAR)

        assert returned == 0
        assert sink.messages[-1] == CreditLiquidityProviders(UNIT, "token0")
        assert manager.get_position(market, pid).total_penalty_paid == UNIT
        assert f"{accrued - UNIT} forgiven" in caplog.text

    def test_twice(self, manager, market):
        pid = _open(manager, market)
        manager.repay(market, pid, "alice", now=0)
        with pytest.raises(PositionNotActive):
            manager.repay(market, pid, "alice", now=0)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:
    def test_penalty_rate(self, manager):
        assert manager.get_penalty_rate_for_threshold(8000) == RATE_BPS
        with pytest.raises(InvalidThreshold):
            manager.get_penalty_rate_for_threshold(9950)

    def test_unknown_position(self, manager, market):
        with pytest.raises(PositionNotActive):
            manager.get_position(market, 1)

    def test_progress_in_band(self, manager, market):
        pid = _open(manager, market)
        assert manager.get_liquidation_progress(market, pid) == 0
        manager.on_price_update(market, TICK_1200, now=0)
        assert manager.get_liquidation_progress(market, pid) == (UPPER - TICK_1200) * 10_000 // WIDTH

    def test_queries_work_on_halted_market(self, manager, market):
        pid = _open(manager, market)
        market.halt("maintenance")
        assert manager.get_position(market, pid).is_active
        assert manager.get_active_position_count(market) == 1


# ---------------------------------------------------------------------------
# Failure isolation and desync handling
# ---------------------------------------------------------------------------

class TestFailures:
    def test_bad_position_isolated(self, manager, market):
        good = _open(manager, market, owner="alice")
        bad = _open(manager, market, owner="bob")
        p = manager.get_position(market, bad)
        market.store.put(replace(p, last_accrual_timestamp=10_000))

        report = manager.on_price_update(market, TICK_1200, now=60)

        assert [f.position_id for f in report.failures] == [bad]
        assert "OutOfOrderUpdate" in report.failures[0].reason
        assert [s.position_id for s in report.steps] == [good]
        assert manager.get_position(market, good).state is PositionState.PARTIALLY_LIQUIDATED
        assert manager.get_position(market, bad).remaining_collateral == UNIT
        assert not report.ok
        assert not market.halted

    def test_desync_halts_market(self, manager, market):
        pid = _open(manager, market)
        market.registry.insert(999, LOWER, UPPER, Direction.TOKEN0)

        report = manager.on_price_update(market, TICK_1200, now=60)

        assert report.halted
        assert market.halted
        assert any(f.position_id == 999 and "registry_desync" in f.reason for f in report.failures)
        # the rest of the batch was still committed
        assert manager.get_position(market, pid).state is PositionState.PARTIALLY_LIQUIDATED
        with pytest.raises(MarketHalted):
            manager.on_price_update(market, TICK_1150, now=120)

    def test_strict_desync_raises_before_commit(self, sink):
        manager = PositionLifecycleManager(_cfg(strict_invariants=True), sink)
        market = new_market(OPEN_TICK)
        pid = _open(manager, market)
        market.registry.insert(999, LOWER, UPPER, Direction.TOKEN0)

        with pytest.raises(RegistryDesyncError):
            manager.on_price_update(market, TICK_1200, now=60)

        assert market.tick == OPEN_TICK
        assert manager.get_position(market, pid).remaining_collateral == UNIT
        assert sink.messages == []

    def test_strict_mode_normal_flow(self, sink):
        manager = PositionLifecycleManager(_cfg(strict_invariants=True), sink)
        market = new_market(OPEN_TICK)
        pid = _open(manager, market)
        manager.on_price_update(market, TICK_1200, now=60)
        manager.on_price_update(market, TICK_900, now=120)
        assert manager.get_position(market, pid).state is PositionState.CLOSED
        assert not market.halted

    def test_repay_unregistered_active_position_halts(self, manager, market):
        pid = _open(manager, market)
        market.registry.remove(pid)
        with pytest.raises(MarketHalted):
            manager.repay(market, pid, "alice", now=0)
        assert market.halted
