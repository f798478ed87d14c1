"""Data types for the range liquidation engine.

Value types are frozen dataclasses. A position update produces a new
``Position`` via ``dataclasses.replace()``; the market store holds the
current value.

Units/conventions:
- ticks follow ``price = 1.0001 ** tick`` with price quoted as token1 per token0,
- amounts are integer base units of the asset they name,
- ``*_bps`` values are basis points (1/10_000),
- timestamps are integer seconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique


@unique
class Direction(Enum):
    """Which asset of the pair is held as collateral.

    TOKEN0 collateral loses value as the tick falls, so its band sits below the
    opening tick. TOKEN1 collateral loses value as the tick rises.
    """
    TOKEN0 = "token0"
    TOKEN1 = "token1"

    @property
    def liquidates_downward(self) -> bool:
        return self is Direction.TOKEN0


@unique
class PositionState(Enum):
    HEALTHY = "healthy"
    UNDERWATER = "underwater"
    PARTIALLY_LIQUIDATED = "partially_liquidated"
    CLOSED = "closed"


@dataclass(frozen=True)
class Position:
    """A borrower's collateral reserved against ``[tick_lower, tick_upper]``."""

    id: int
    owner: str
    direction: Direction
    initial_collateral: int
    remaining_collateral: int
    debt_principal: int
    remaining_debt: int
    tick_lower: int
    tick_upper: int
    liquidation_threshold_bps: int
    open_timestamp: int
    last_accrual_timestamp: int
    accumulated_penalty: int = 0
    last_liquidation_timestamp: int = 0
    total_penalty_paid: int = 0
    state: PositionState = PositionState.HEALTHY

    @property
    def is_active(self) -> bool:
        return self.state is not PositionState.CLOSED

    @property
    def liquidated_collateral(self) -> int:
        return self.initial_collateral - self.remaining_collateral

    @property
    def width(self) -> int:
        return self.tick_upper - self.tick_lower

    @property
    def trigger_tick(self) -> int:
        """Band edge nearer the opening price (liquidation starts here)."""
        return self.tick_upper if self.direction.liquidates_downward else self.tick_lower

    @property
    def full_tick(self) -> int:
        """Band edge at which the position is fully liquidated."""
        return self.tick_lower if self.direction.liquidates_downward else self.tick_upper

    def contains(self, tick: int) -> bool:
        return self.tick_lower <= tick <= self.tick_upper


@dataclass(frozen=True)
class BorrowRequest:
    owner: str
    collateral: int
    debt: int
    threshold_bps: int
    direction: Direction


@dataclass(frozen=True)
class PriceUpdate:
    """A price-changing trade moved the market to ``new_tick``.

    ``direction`` restricts processing to positions holding that collateral;
    ``None`` processes both sides. ``price_taker`` receives the taker share of
    any penalty distributed by this update.
    """

    new_tick: int
    direction: Direction | None = None
    price_taker: str | None = None


@dataclass(frozen=True)
class RepayRequest:
    position_id: int
    caller: str


@dataclass(frozen=True)
class LiquidationStep:
    """What one price update did to one position."""

    position_id: int
    state_before: PositionState
    state_after: PositionState
    collateral_liquidated: int = 0
    debt_repaid: int = 0
    penalty_accrued: int = 0
    penalty_to_liquidity_providers: int = 0
    penalty_to_price_taker: int = 0
    progress_bps: int = 0


@dataclass(frozen=True)
class PositionFailure:
    position_id: int
    reason: str


@dataclass(frozen=True)
class PriceUpdateReport:
    """Outcome of ``on_price_update``.

    ``failures`` lists positions skipped by an isolated error; the rest of the
    batch was still applied. ``halted`` is True when the market stopped
    accepting mutations after this event.
    """

    tick: int
    previous_tick: int
    steps: tuple[LiquidationStep, ...] = ()
    closed: tuple[int, ...] = ()
    failures: tuple[PositionFailure, ...] = ()
    warnings: tuple[str, ...] = ()
    halted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.halted

    @property
    def collateral_liquidated(self) -> int:
        return sum(s.collateral_liquidated for s in self.steps)


@dataclass(frozen=True)
class AccrualResult:
    position: Position
    charged: int = 0
    saturated: bool = False


@dataclass(frozen=True)
class DistributionResult:
    to_liquidity_providers: int
    to_price_taker: int

    @property
    def total(self) -> int:
        return self.to_liquidity_providers + self.to_price_taker


@dataclass(frozen=True)
class Band:
    tick_lower: int
    tick_upper: int
    max_debt: int = 0
    trigger_tick: int = 0
    full_tick: int = 0
    expanded: bool = False
    clamped: bool = False
