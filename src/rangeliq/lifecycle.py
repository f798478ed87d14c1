"""Position lifecycle: open, price updates, repay, queries.

``PositionLifecycleManager`` is the only writer of a ``Market``. Each public
mutation is one event:

1. validate (raise before touching anything),
2. compute new ``Position`` values and outbound messages into staging,
3. commit staged positions and registry removals together,
4. check invariants,
5. flush outbound messages to the sink (state-then-notify).

State machine::

    HEALTHY --tick reaches trigger--> UNDERWATER --delta > 0--> PARTIALLY_LIQUIDATED
       ^                                 |                          |
       +--tick back on the safe side-----+                          |
    any active --remaining == 0 or repay--> CLOSED  <---------------+

Liquidation is a ratchet: leaving the band pauses accrual but never restores
collateral, and a PARTIALLY_LIQUIDATED position never returns to HEALTHY.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .band import compute_band
from .config import LiquidationConfig
from .distributor import distribute
from .effects import LiquidationSink, NullSink, OutboundBuffer
from .errors import (
    ArithmeticSaturation,
    InvalidAmount,
    InvalidRange,
    InvalidThreshold,
    InvariantViolation,
    OutOfOrderUpdate,
    PositionNotActive,
    RegistryDesyncError,
    Unauthorized,
)
from .invariants import check_all, check_position, is_desync
from .market import Market
from .penalty import accrue, penalty_rate_bps
from .progress import debt_repaid_for, is_past_trigger, liquidation_delta, progress_bps
from .tick_math import BPS_SCALE, in_tick_domain
from .types import (
    BorrowRequest,
    Direction,
    LiquidationStep,
    Position,
    PositionFailure,
    PositionState,
    PriceUpdate,
    PriceUpdateReport,
    RepayRequest,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _StepOutcome:
    position: Position
    step: LiquidationStep
    outbound: OutboundBuffer
    saturated: bool


def _require_amount(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidAmount(f"{name} must be a positive int, got {value!r}")


class PositionLifecycleManager:
    """Orchestrates band conversion, accrual, progress and distribution."""

    def __init__(self, config: LiquidationConfig, sink: Optional[LiquidationSink] = None) -> None:
        self.config = config
        self.sink: LiquidationSink = sink if sink is not None else NullSink()

    def asset_for(self, direction: Direction) -> str:
        if direction is Direction.TOKEN0:
            return self.config.token0_asset
        return self.config.token1_asset

    # -- borrow ----------------------------------------------------------------

    def open(
        self,
        market: Market,
        owner: str,
        collateral: int,
        debt: int,
        direction: Direction,
        threshold_bps: int,
        *,
        now: int,
    ) -> int:
        """Open a HEALTHY position and register it. Returns the position id.

        Raises:
            InvalidAmount: collateral or debt not a positive int.
            InvalidThreshold: threshold outside ``threshold_bps_range``.
            InvalidRange: band degenerate or containing the current tick.
            MarketHalted / OutOfOrderUpdate: market not writable at ``now``.
        """
        market.ensure_writable()
        self._check_clock(market, now)
        if not isinstance(owner, str) or not owner:
            raise ValueError("owner must be a non-empty string")
        _require_amount("collateral", collateral)
        _require_amount("debt", debt)
        if not self.config.threshold_allowed(threshold_bps):
            lo, hi = self.config.threshold_bps_range
            raise InvalidThreshold(f"threshold_bps must be in [{lo}, {hi}]: {threshold_bps}")

        band = compute_band(market.tick, collateral, debt, threshold_bps, direction, self.config)

        pid = market.store.allocate_id()
        position = Position(
            id=pid,
            owner=owner,
            direction=direction,
            initial_collateral=collateral,
            remaining_collateral=collateral,
            debt_principal=debt,
            remaining_debt=debt,
            tick_lower=band.tick_lower,
            tick_upper=band.tick_upper,
            liquidation_threshold_bps=threshold_bps,
            open_timestamp=now,
            last_accrual_timestamp=now,
        )
        market.store.put(position)
        market.registry.insert(pid, band.tick_lower, band.tick_upper, direction)
        market.last_event_time = now

        logger.info(
            "opened position %d owner=%s direction=%s band=[%d, %d] collateral=%d debt=%d",
            pid, owner, direction.value, band.tick_lower, band.tick_upper, collateral, debt,
        )
        if self.config.strict_invariants:
            self._raise_on_violations(market)
        return pid

    def borrow(self, market: Market, request: BorrowRequest, *, now: int) -> int:
        return self.open(
            market,
            request.owner,
            request.collateral,
            request.debt,
            request.direction,
            request.threshold_bps,
            now=now,
        )

    # -- price updates ---------------------------------------------------------

    def on_price_update(
        self,
        market: Market,
        new_tick: int,
        direction: Optional[Direction] = None,
        *,
        now: int,
        price_taker: Optional[str] = None,
    ) -> PriceUpdateReport:
        """Apply one price-changing trade to every affected position.

        Positions whose trigger edge the previous or the new tick reached, on
        either side, get their accrual settled and their state updated. Those
        whose trigger edge ``new_tick`` reached (filtered by ``direction``)
        also run a liquidation step. A failure on one position is reported
        and does not stop the others.
        """
        market.ensure_writable()
        self._check_clock(market, now)
        if not in_tick_domain(new_tick):
            raise InvalidRange(f"tick outside domain: {new_tick}")

        prev_tick = market.tick
        registry = market.registry
        settled = set(registry.positions_triggered(prev_tick)) | set(registry.positions_triggered(new_tick))
        triggered = set(registry.positions_triggered(new_tick, direction))

        staged: Dict[int, Position] = {}
        closed: List[int] = []
        steps: List[LiquidationStep] = []
        failures: List[PositionFailure] = []
        warnings: List[str] = []
        desync: List[str] = []
        outbound = OutboundBuffer()

        for pid in sorted(settled | triggered):
            position = market.store.get(pid)
            if position is None or not position.is_active:
                reason = f"registry_desync: position {pid} {'missing from' if position is None else 'closed in'} store"
                desync.append(reason)
                failures.append(PositionFailure(position_id=pid, reason=reason))
                continue
            try:
                outcome = self._liquidation_step(
                    position, prev_tick, new_tick, now, pid in triggered, price_taker,
                )
            except Exception as exc:
                logger.warning("position %d skipped at tick %d: %s", pid, new_tick, exc)
                failures.append(PositionFailure(position_id=pid, reason=f"{type(exc).__name__}: {exc}"))
                continue

            staged[pid] = outcome.position
            steps.append(outcome.step)
            outbound.extend(outcome.outbound)
            if outcome.saturated:
                warnings.append(f"{ArithmeticSaturation.__name__}:{pid}")
            if outcome.position.state is PositionState.CLOSED:
                closed.append(pid)

        if desync and self.config.strict_invariants:
            raise RegistryDesyncError("; ".join(desync))

        for position in staged.values():
            market.store.put(position)
        for pid in closed:
            market.registry.remove(pid)
        market.tick = new_tick
        market.last_event_time = now

        if desync:
            market.halt("; ".join(desync))
        self._post_commit_checks(market, staged.values())

        outbound.flush(self.sink)
        for pid in closed:
            logger.info("position %d fully liquidated at tick %d", pid, new_tick)

        return PriceUpdateReport(
            tick=new_tick,
            previous_tick=prev_tick,
            steps=tuple(steps),
            closed=tuple(closed),
            failures=tuple(failures),
            warnings=tuple(warnings),
            halted=market.halted,
        )

    def apply(self, market: Market, event: PriceUpdate, *, now: int) -> PriceUpdateReport:
        return self.on_price_update(
            market, event.new_tick, event.direction, now=now, price_taker=event.price_taker,
        )

    def _liquidation_step(
        self,
        position: Position,
        prev_tick: int,
        new_tick: int,
        now: int,
        triggered: bool,
        price_taker: Optional[str],
    ) -> _StepOutcome:
        """accrue -> progress -> delta -> distribute -> mutate, for one position."""
        state_before = position.state
        accrual = accrue(position, prev_tick, now, self.config)
        p = accrual.position
        out = OutboundBuffer()

        delta = liquidation_delta(p, new_tick, now, self.config) if triggered else 0
        debt_repaid = 0
        to_lp = to_taker = 0

        if delta > 0:
            debt_repaid = debt_repaid_for(p, delta)
            dist, p = distribute(p, self.config)
            remaining = p.remaining_collateral - delta
            p = replace(
                p,
                remaining_collateral=remaining,
                remaining_debt=p.remaining_debt - debt_repaid,
                last_liquidation_timestamp=now,
                state=PositionState.CLOSED if remaining == 0 else PositionState.PARTIALLY_LIQUIDATED,
            )

            asset = self.asset_for(p.direction)
            to_lp, to_taker = dist.to_liquidity_providers, dist.to_price_taker
            if price_taker is None:
                to_lp, to_taker = dist.total, 0
            out.notify_liquidation(p.id, debt_repaid, delta, remaining == 0)
            out.credit_liquidity_providers(to_lp, asset)
            if price_taker is not None:
                out.credit_price_taker(price_taker, to_taker, asset)
        elif is_past_trigger(p, new_tick) and p.state is PositionState.HEALTHY:
            p = replace(p, state=PositionState.UNDERWATER)
        elif not is_past_trigger(p, new_tick) and p.state is PositionState.UNDERWATER:
            p = replace(p, state=PositionState.HEALTHY)

        logger.debug(
            "position %d tick %d -> %d: %s -> %s delta=%d debt_repaid=%d penalty=%d",
            p.id, prev_tick, new_tick, state_before.value, p.state.value, delta, debt_repaid, accrual.charged,
        )
        step = LiquidationStep(
            position_id=p.id,
            state_before=state_before,
            state_after=p.state,
            collateral_liquidated=delta,
            debt_repaid=debt_repaid,
            penalty_accrued=accrual.charged,
            penalty_to_liquidity_providers=to_lp,
            penalty_to_price_taker=to_taker,
            progress_bps=progress_bps(p, new_tick),
        )
        return _StepOutcome(position=p, step=step, outbound=out, saturated=accrual.saturated)

    # -- repay -----------------------------------------------------------------

    def repay(self, market: Market, position_id: int, caller: str, *, now: int) -> int:
        """Close a position on explicit repay. Returns the collateral returned.

        The final accrued penalty is taken out of the returned collateral
        (capped at what remains, the excess is forgiven and logged) and
        credited to liquidity providers.

        Raises:
            PositionNotActive: unknown or already closed position.
            Unauthorized: caller is not the owner.
        """
        market.ensure_writable()
        self._check_clock(market, now)
        position = market.store.get(position_id)
        if position is None:
            raise PositionNotActive(f"unknown position: {position_id}")
        if caller != position.owner:
            raise Unauthorized(f"caller {caller!r} does not own position {position_id}")
        if not position.is_active:
            raise PositionNotActive(f"position {position_id} is closed")
        if position_id not in market.registry:
            reason = f"registry_desync: active position {position_id} not registered"
            if self.config.strict_invariants:
                raise RegistryDesyncError(reason)
            market.halt(reason)
            market.ensure_writable()

        p = accrue(position, market.tick, now, self.config).position
        penalty = min(p.accumulated_penalty, p.remaining_collateral)
        if p.accumulated_penalty > penalty:
            logger.warning(
                "position %d repaid with penalty %d above remaining collateral; %d forgiven",
                position_id, p.accumulated_penalty, p.accumulated_penalty - penalty,
            )
        returned = p.remaining_collateral - penalty
        asset = self.asset_for(p.direction)

        p = replace(
            p,
            remaining_collateral=0,
            remaining_debt=0,
            accumulated_penalty=0,
            total_penalty_paid=p.total_penalty_paid + penalty,
            state=PositionState.CLOSED,
        )
        out = OutboundBuffer()
        out.credit_liquidity_providers(penalty, asset)
        out.return_collateral(p.owner, returned, asset)

        market.store.put(p)
        market.registry.remove(position_id)
        market.last_event_time = now
        self._post_commit_checks(market, (p,))

        out.flush(self.sink)
        logger.info("position %d repaid by %s: returned=%d penalty=%d", position_id, caller, returned, penalty)
        return returned

    def repay_request(self, market: Market, request: RepayRequest, *, now: int) -> int:
        return self.repay(market, request.position_id, request.caller, now=now)

    # -- queries ---------------------------------------------------------------

    def get_position(self, market: Market, position_id: int) -> Position:
        position = market.store.get(position_id)
        if position is None:
            raise PositionNotActive(f"unknown position: {position_id}")
        return position

    def is_underwater(self, market: Market, position_id: int) -> bool:
        position = self.get_position(market, position_id)
        return position.is_active and is_past_trigger(position, market.tick)

    def get_liquidation_progress(self, market: Market, position_id: int) -> int:
        """Progress in bps: band depth at the current tick, or the realized share once closed."""
        position = self.get_position(market, position_id)
        if position.is_active:
            return progress_bps(position, market.tick)
        return (position.liquidated_collateral * BPS_SCALE) // position.initial_collateral

    def get_penalty_rate_for_threshold(self, threshold_bps: int) -> int:
        if not self.config.threshold_allowed(threshold_bps):
            raise InvalidThreshold(f"threshold_bps outside policy range: {threshold_bps}")
        return penalty_rate_bps(threshold_bps, self.config)

    def get_active_position_count(self, market: Market) -> int:
        return len(market.registry)

    # -- internals -------------------------------------------------------------

    @staticmethod
    def _check_clock(market: Market, now: int) -> None:
        if now < market.last_event_time:
            raise OutOfOrderUpdate(f"now={now} < last event time {market.last_event_time}")

    def _post_commit_checks(self, market: Market, touched) -> None:
        if self.config.strict_invariants:
            self._raise_on_violations(market)
            return
        violations = [f"{v}:{p.id}" for p in touched for v in check_position(p, self.config)]
        if violations:
            market.halt(f"invariant violations: {', '.join(violations)}")

    def _raise_on_violations(self, market: Market) -> None:
        violations = check_all(market, self.config)
        if not violations:
            return
        if is_desync(violations):
            market.halt(f"registry desync: {', '.join(violations)}")
            raise RegistryDesyncError(", ".join(violations))
        market.halt(f"invariant violations: {', '.join(violations)}")
        raise InvariantViolation(violations)
