"""`rangeliq`: oracleless, price-range-based collateral liquidation.

A borrower's collateral is reserved against a tick band derived from the loan
terms. As the market tick moves through the band the collateral is liquidated
gradually, with a time-weighted penalty while the position sits underwater.

- deterministic integer amounts, explicit rounding,
- frozen value types, one explicit ``Market`` ledger per market,
- outbound messages delivered only after state is committed.

Public API:
- `new_market(initial_tick) -> Market`
- `PositionLifecycleManager(config, sink)` with `open`, `on_price_update`, `repay` and queries
- `compute_band(...)`, `accrue(...)`, `progress(...)`, `distribute(...)`
"""

from .band import compute_band, max_debt_with_growth
from .config import LiquidationConfig, config_from_dict, config_to_dict, load_config
from .distributor import distribute, split_penalty
from .effects import (
    CreditLiquidityProviders,
    CreditPriceTaker,
    LiquidationSink,
    NotifyLiquidation,
    NullSink,
    OutboundBuffer,
    RecordingSink,
    ReturnCollateral,
)
from .errors import (
    ArithmeticSaturation,
    ConfigError,
    InvalidAmount,
    InvalidRange,
    InvalidThreshold,
    InvariantViolation,
    LiquidationError,
    MarketHalted,
    OutOfOrderUpdate,
    PositionNotActive,
    RegistryDesyncError,
    Unauthorized,
)
from .invariants import check_all
from .lifecycle import PositionLifecycleManager
from .market import Market, new_market
from .penalty import accrue, penalty_rate_bps
from .progress import liquidation_delta, progress, progress_bps
from .registry import PositionStore, TickIndexedPositionRegistry
from .types import (
    Band,
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

__all__ = [
    "new_market",
    "Market",
    "PositionLifecycleManager",
    "LiquidationConfig",
    "config_from_dict",
    "config_to_dict",
    "load_config",
    "compute_band",
    "max_debt_with_growth",
    "accrue",
    "penalty_rate_bps",
    "progress",
    "progress_bps",
    "liquidation_delta",
    "distribute",
    "split_penalty",
    "check_all",
    "PositionStore",
    "TickIndexedPositionRegistry",
    "LiquidationSink",
    "OutboundBuffer",
    "RecordingSink",
    "NullSink",
    "CreditLiquidityProviders",
    "CreditPriceTaker",
    "NotifyLiquidation",
    "ReturnCollateral",
    "Band",
    "BorrowRequest",
    "Direction",
    "LiquidationStep",
    "Position",
    "PositionFailure",
    "PositionState",
    "PriceUpdate",
    "PriceUpdateReport",
    "RepayRequest",
    "LiquidationError",
    "InvalidAmount",
    "InvalidThreshold",
    "InvalidRange",
    "PositionNotActive",
    "Unauthorized",
    "MarketHalted",
    "OutOfOrderUpdate",
    "ConfigError",
    "RegistryDesyncError",
    "InvariantViolation",
    "ArithmeticSaturation",
]
