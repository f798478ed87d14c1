"""Exception types for the range liquidation engine.

Validation failures on ``open``/``repay`` raise before anything is mutated.
Invariant failures are ``AssertionError`` subclasses so test runs fail loudly.
"""

from __future__ import annotations


class LiquidationError(Exception):
    """Base class for engine errors."""


class InvalidAmount(LiquidationError):
    """Raised when collateral or debt is zero/negative on open."""


class InvalidThreshold(LiquidationError):
    """Raised when a liquidation threshold is outside the configured range."""


class InvalidRange(LiquidationError):
    """Raised when a band is degenerate, out of domain, or contains the opening tick."""


class PositionNotActive(LiquidationError):
    """Raised when a position is unknown or already closed."""


class Unauthorized(LiquidationError):
    """Raised when the caller does not own the position."""


class MarketHalted(LiquidationError):
    """Raised when a market stopped accepting mutations after an invariant failure."""


class OutOfOrderUpdate(LiquidationError, ValueError):
    """Raised when an event timestamp is earlier than the last applied one."""


class ConfigError(ValueError):
    """Raised for invalid engine configuration."""


class RegistryDesyncError(AssertionError):
    """Raised when the tick registry and the position store disagree."""


class InvariantViolation(AssertionError):
    """Raised when a market violates one or more invariants."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")


class ArithmeticSaturation(Warning):
    """An amount was clamped to ``MAX_AMOUNT`` instead of overflowing."""
