"""Per-market mutable context.

A ``Market`` bundles the position store, the tick registry, the last applied
tick and event time. It is passed explicitly to every lifecycle operation;
there is no module-level ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidRange, MarketHalted
from .registry import PositionStore, TickIndexedPositionRegistry
from .tick_math import in_tick_domain

logger = logging.getLogger(__name__)


@dataclass
class Market:
    """Mutable ledger for one market. Single writer."""

    tick: int
    store: PositionStore = field(default_factory=PositionStore)
    registry: TickIndexedPositionRegistry = field(default_factory=TickIndexedPositionRegistry)
    last_event_time: int = 0
    halted: bool = False
    halt_reason: Optional[str] = None

    def halt(self, reason: str) -> None:
        """Stop accepting mutations. Queries keep working."""
        if not self.halted:
            logger.error("market halted: %s", reason)
        self.halted = True
        self.halt_reason = reason

    def ensure_writable(self) -> None:
        if self.halted:
            raise MarketHalted(self.halt_reason or "market halted")


def new_market(initial_tick: int, *, now: int = 0) -> Market:
    if not in_tick_domain(initial_tick):
        raise InvalidRange(f"initial tick outside domain: {initial_tick}")
    if now < 0:
        raise ValueError(f"now must be non-negative: {now}")
    return Market(tick=initial_tick, last_event_time=now)
