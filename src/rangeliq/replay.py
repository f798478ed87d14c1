"""Replay a YAML liquidation scenario through the engine.

Scenario format::

    config: {tick_spacing: 60, ...}     # optional, LiquidationConfig fields
    initial_price: 2000                 # or initial_tick: 76012
    start_time: 0                       # optional
    events:
      - {time: 0, open: {owner: alice, collateral: 1000, debt: 400000, threshold_bps: 8000, direction: token0}}
      - {time: 3600, price: {price: 1150, direction: token0, price_taker: bob}}
      - {time: 7200, repay: {position_id: 1, caller: alice}}

``price`` events accept either ``tick`` or ``price``. Output is a JSON
document with per-event results, every outbound message, and final positions.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import yaml

from .config import config_from_dict
from .effects import RecordingSink
from .errors import LiquidationError
from .lifecycle import PositionLifecycleManager
from .market import Market, new_market
from .tick_math import price_to_tick
from .types import Direction, Position

logger = logging.getLogger(__name__)


def _tick_of(body: Mapping[str, Any], key_tick: str, key_price: str) -> int:
    if key_tick in body:
        return int(body[key_tick])
    if key_price in body:
        return price_to_tick(float(body[key_price]))
    raise ValueError(f"expected {key_tick!r} or {key_price!r}")


def _direction(value: Any) -> Optional[Direction]:
    if value is None:
        return None
    return Direction(str(value))


def position_to_dict(p: Position) -> dict[str, Any]:
    d = asdict(p)
    d["direction"] = p.direction.value
    d["state"] = p.state.value
    return d


def _apply_event(manager: PositionLifecycleManager, market: Market, event: Mapping[str, Any]) -> dict[str, Any]:
    now = int(event["time"])
    if "open" in event:
        body = event["open"]
        pid = manager.open(
            market,
            str(body["owner"]),
            int(body["collateral"]),
            int(body["debt"]),
            Direction(str(body.get("direction", "token0"))),
            int(body["threshold_bps"]),
            now=now,
        )
        return {"kind": "open", "position_id": pid}
    if "price" in event:
        body = event["price"]
        report = manager.on_price_update(
            market,
            _tick_of(body, "tick", "price"),
            _direction(body.get("direction")),
            now=now,
            price_taker=body.get("price_taker"),
        )
        return {
            "kind": "price",
            "tick": report.tick,
            "closed": list(report.closed),
            "collateral_liquidated": report.collateral_liquidated,
            "failures": [asdict(f) for f in report.failures],
            "warnings": list(report.warnings),
            "halted": report.halted,
        }
    if "repay" in event:
        body = event["repay"]
        returned = manager.repay(market, int(body["position_id"]), str(body["caller"]), now=now)
        return {"kind": "repay", "position_id": int(body["position_id"]), "returned": returned}
    raise ValueError(f"unknown event: {sorted(event)}")


def run_scenario(doc: Mapping[str, Any]) -> dict[str, Any]:
    """Apply every event of ``doc``; validation errors are recorded, not raised."""
    config = config_from_dict(doc.get("config") or {})
    sink = RecordingSink()
    manager = PositionLifecycleManager(config, sink)
    market = new_market(_tick_of(doc, "initial_tick", "initial_price"), now=int(doc.get("start_time", 0)))

    results: list[dict[str, Any]] = []
    for i, event in enumerate(doc.get("events") or []):
        try:
            results.append(_apply_event(manager, market, event))
        except (LiquidationError, ValueError, KeyError) as exc:
            logger.warning("event %d rejected: %s", i, exc)
            results.append({"kind": "error", "index": i, "error": f"{type(exc).__name__}: {exc}"})

    return {
        "events": results,
        "messages": [{"type": type(m).__name__, **asdict(m)} for m in sink.messages],
        "positions": [position_to_dict(p) for p in market.store.values()],
        "final_tick": market.tick,
        "active_positions": manager.get_active_position_count(market),
        "halted": market.halted,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Replay a range-liquidation scenario.")
    ap.add_argument("scenario", type=Path, help="scenario YAML file")
    ap.add_argument("--out", type=Path, default=None, help="write JSON here instead of stdout")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    doc = yaml.safe_load(args.scenario.read_text(encoding="utf-8"))
    if not isinstance(doc, Mapping):
        print(f"scenario must contain a mapping: {args.scenario}", file=sys.stderr)
        return 1

    result = run_scenario(doc)
    text = json.dumps(result, indent=2, sort_keys=True)
    if args.out is not None:
        args.out.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)
    return 1 if any(e["kind"] == "error" for e in result["events"]) else 0


if __name__ == "__main__":
    raise SystemExit(main())
