"""Position store and tick-indexed registry.

``PositionStore`` owns the ``Position`` values, keyed by id.
``TickIndexedPositionRegistry`` owns membership only: per direction, every
active id sits in the bucket of its lower tick and the bucket of its upper
tick, plus one flat active list for full scans.

Removal is swap-with-last in every list it touches, so it is O(1) apart from
dropping an emptied bucket's key from the sorted key list.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .types import Direction, Position

PositionId = int


class PositionStore:
    """Deterministic id -> Position table."""

    def __init__(self) -> None:
        self._positions: Dict[PositionId, Position] = {}
        self._next_id: PositionId = 1

    def allocate_id(self) -> PositionId:
        """Reserve the next position id."""
        pid = self._next_id
        self._next_id += 1
        return pid

    def get(self, position_id: PositionId) -> Optional[Position]:
        return self._positions.get(position_id)

    def require(self, position_id: PositionId) -> Position:
        """Return the position or raise ``KeyError``."""
        try:
            return self._positions[position_id]
        except KeyError:
            raise KeyError(f"unknown position id: {position_id}") from None

    def put(self, position: Position) -> None:
        if position.id <= 0 or position.id >= self._next_id:
            raise ValueError(f"position id was not allocated by this store: {position.id}")
        self._positions[position.id] = position

    def ids(self) -> List[PositionId]:
        return sorted(self._positions)

    def values(self) -> Iterator[Position]:
        for pid in sorted(self._positions):
            yield self._positions[pid]

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def __repr__(self) -> str:
        return f"PositionStore({len(self._positions)} positions, next_id={self._next_id})"


class _TickBuckets:
    """tick -> ids, with a sorted key list for range scans.

    Each id lives in at most one bucket of a given ``_TickBuckets``.
    """

    def __init__(self) -> None:
        self._buckets: Dict[int, List[PositionId]] = {}
        self._slot: Dict[PositionId, int] = {}
        self._ticks: List[int] = []

    def add(self, tick: int, position_id: PositionId) -> None:
        bucket = self._buckets.get(tick)
        if bucket is None:
            bucket = []
            self._buckets[tick] = bucket
            insort(self._ticks, tick)
        self._slot[position_id] = len(bucket)
        bucket.append(position_id)

    def discard(self, tick: int, position_id: PositionId) -> None:
        bucket = self._buckets[tick]
        idx = self._slot.pop(position_id)
        last = bucket.pop()
        if last != position_id:
            bucket[idx] = last
            self._slot[last] = idx
        if not bucket:
            del self._buckets[tick]
            del self._ticks[bisect_left(self._ticks, tick)]

    def ids_at(self, tick: int) -> Tuple[PositionId, ...]:
        return tuple(self._buckets.get(tick, ()))

    def ids_at_or_above(self, tick: int) -> Iterator[PositionId]:
        for t in self._ticks[bisect_left(self._ticks, tick):]:
            yield from self._buckets[t]

    def ids_at_or_below(self, tick: int) -> Iterator[PositionId]:
        for t in self._ticks[:bisect_right(self._ticks, tick)]:
            yield from self._buckets[t]

    def ticks(self) -> List[int]:
        return list(self._ticks)

    def __len__(self) -> int:
        return len(self._slot)


class TickIndexedPositionRegistry:
    """Boundary-tick index over active positions.

    Query results are sorted by id so batch processing order is deterministic.
    """

    def __init__(self) -> None:
        self._lower: Dict[Direction, _TickBuckets] = {d: _TickBuckets() for d in Direction}
        self._upper: Dict[Direction, _TickBuckets] = {d: _TickBuckets() for d in Direction}
        self._bands: Dict[PositionId, Tuple[int, int, Direction]] = {}
        self._active: List[PositionId] = []
        self._active_slot: Dict[PositionId, int] = {}

    # -- mutation ------------------------------------------------------------

    def insert(self, position_id: PositionId, tick_lower: int, tick_upper: int, direction: Direction) -> None:
        if position_id in self._bands:
            raise ValueError(f"position already registered: {position_id}")
        if tick_lower >= tick_upper:
            raise ValueError(f"invalid band [{tick_lower}, {tick_upper}]")
        self._bands[position_id] = (tick_lower, tick_upper, direction)
        self._lower[direction].add(tick_lower, position_id)
        self._upper[direction].add(tick_upper, position_id)
        self._active_slot[position_id] = len(self._active)
        self._active.append(position_id)

    def remove(self, position_id: PositionId) -> None:
        """Remove an id from both buckets and the active list. ``KeyError`` if absent."""
        tick_lower, tick_upper, direction = self._bands.pop(position_id)
        self._lower[direction].discard(tick_lower, position_id)
        self._upper[direction].discard(tick_upper, position_id)

        idx = self._active_slot.pop(position_id)
        last = self._active.pop()
        if last != position_id:
            self._active[idx] = last
            self._active_slot[last] = idx

    # -- queries -------------------------------------------------------------

    def positions_in_range(self, tick: int, direction: Direction | None = None) -> List[PositionId]:
        """Ids whose band contains ``tick``."""
        out: List[PositionId] = []
        for d in _directions(direction):
            for pid in self._triggered(tick, d):
                lower, upper, _ = self._bands[pid]
                if lower <= tick <= upper:
                    out.append(pid)
        return sorted(out)

    def positions_triggered(self, tick: int, direction: Direction | None = None) -> List[PositionId]:
        """Ids whose trigger edge ``tick`` has reached (in band or past the far edge)."""
        out: List[PositionId] = []
        for d in _directions(direction):
            out.extend(self._triggered(tick, d))
        return sorted(out)

    def _triggered(self, tick: int, direction: Direction) -> Iterable[PositionId]:
        if direction.liquidates_downward:
            return self._upper[direction].ids_at_or_above(tick)
        return self._lower[direction].ids_at_or_below(tick)

    def scan_in_range(self, tick: int, direction: Direction | None = None) -> List[PositionId]:
        """Full scan of the active list; same result as ``positions_in_range``."""
        dirs = set(_directions(direction))
        return sorted(
            pid
            for pid in self._active
            if self._bands[pid][2] in dirs and self._bands[pid][0] <= tick <= self._bands[pid][1]
        )

    def band_of(self, position_id: PositionId) -> Tuple[int, int, Direction]:
        return self._bands[position_id]

    def buckets_for(self, tick: int, direction: Direction) -> Tuple[Tuple[PositionId, ...], Tuple[PositionId, ...]]:
        """``(ids with lower == tick, ids with upper == tick)``."""
        return self._lower[direction].ids_at(tick), self._upper[direction].ids_at(tick)

    def active_ids(self) -> List[PositionId]:
        return sorted(self._active)

    def verify(self) -> List[str]:
        """Return membership problems (empty = consistent)."""
        problems: List[str] = []
        if len(self._active) != len(self._bands):
            problems.append("active_count_mismatch")
        for pid in self._active:
            band = self._bands.get(pid)
            if band is None:
                problems.append(f"active_without_band:{pid}")
                continue
            lower, upper, direction = band
            if self._lower[direction].ids_at(lower).count(pid) != 1:
                problems.append(f"lower_bucket:{pid}")
            if self._upper[direction].ids_at(upper).count(pid) != 1:
                problems.append(f"upper_bucket:{pid}")
        indexed = sum(len(self._lower[d]) for d in Direction)
        if indexed != len(self._bands):
            problems.append("lower_index_count_mismatch")
        indexed = sum(len(self._upper[d]) for d in Direction)
        if indexed != len(self._bands):
            problems.append("upper_index_count_mismatch")
        return problems

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._bands

    def __len__(self) -> int:
        return len(self._active)

    def __repr__(self) -> str:
        return f"TickIndexedPositionRegistry({len(self._active)} active)"


def _directions(direction: Direction | None) -> Tuple[Direction, ...]:
    return tuple(Direction) if direction is None else (direction,)
