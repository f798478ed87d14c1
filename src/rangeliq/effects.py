"""Outbound messages to external collaborators.

The engine never calls a collaborator while a transition is in flight.
Messages are appended to an ``OutboundBuffer`` and flushed to the injected
``LiquidationSink`` only after the market state is committed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Protocol, Union


@dataclass(frozen=True)
class CreditLiquidityProviders:
    amount: int
    asset: str


@dataclass(frozen=True)
class CreditPriceTaker:
    recipient: str
    amount: int
    asset: str


@dataclass(frozen=True)
class NotifyLiquidation:
    position_id: int
    debt_repaid: int
    collateral_liquidated: int
    fully_liquidated: bool


@dataclass(frozen=True)
class ReturnCollateral:
    owner: str
    amount: int
    asset: str


Message = Union[CreditLiquidityProviders, CreditPriceTaker, NotifyLiquidation, ReturnCollateral]


class LiquidationSink(Protocol):
    """Capabilities the engine needs from settlement/accounting collaborators."""

    def credit_liquidity_providers(self, amount: int, asset: str) -> None: ...

    def credit_price_taker(self, recipient: str, amount: int, asset: str) -> None: ...

    def notify_liquidation(
        self, position_id: int, debt_repaid: int, collateral_liquidated: int, fully_liquidated: bool,
    ) -> None: ...

    def return_collateral(self, owner: str, amount: int, asset: str) -> None: ...


_DISPATCH: dict[type, Callable[[LiquidationSink, Message], None]] = {
    CreditLiquidityProviders: lambda s, m: s.credit_liquidity_providers(m.amount, m.asset),
    CreditPriceTaker: lambda s, m: s.credit_price_taker(m.recipient, m.amount, m.asset),
    NotifyLiquidation: lambda s, m: s.notify_liquidation(
        m.position_id, m.debt_repaid, m.collateral_liquidated, m.fully_liquidated,
    ),
    ReturnCollateral: lambda s, m: s.return_collateral(m.owner, m.amount, m.asset),
}


class OutboundBuffer:
    """Ordered messages awaiting delivery. Zero-amount credits are dropped."""

    def __init__(self) -> None:
        self._messages: List[Message] = []

    def credit_liquidity_providers(self, amount: int, asset: str) -> None:
        if amount > 0:
            self._messages.append(CreditLiquidityProviders(amount=amount, asset=asset))

    def credit_price_taker(self, recipient: str, amount: int, asset: str) -> None:
        if amount > 0:
            self._messages.append(CreditPriceTaker(recipient=recipient, amount=amount, asset=asset))

    def notify_liquidation(
        self, position_id: int, debt_repaid: int, collateral_liquidated: int, fully_liquidated: bool,
    ) -> None:
        self._messages.append(
            NotifyLiquidation(
                position_id=position_id,
                debt_repaid=debt_repaid,
                collateral_liquidated=collateral_liquidated,
                fully_liquidated=fully_liquidated,
            )
        )

    def return_collateral(self, owner: str, amount: int, asset: str) -> None:
        if amount > 0:
            self._messages.append(ReturnCollateral(owner=owner, amount=amount, asset=asset))

    def extend(self, other: "OutboundBuffer") -> None:
        self._messages.extend(other._messages)

    def messages(self) -> List[Message]:
        return list(self._messages)

    def flush(self, sink: LiquidationSink) -> List[Message]:
        """Deliver every message in order, then clear. Returns what was delivered."""
        delivered, self._messages = self._messages, []
        for msg in delivered:
            _DISPATCH[type(msg)](sink, msg)
        return delivered

    def __len__(self) -> int:
        return len(self._messages)


class RecordingSink:
    """Sink that keeps every delivered message, in order."""

    def __init__(self) -> None:
        self.messages: List[Message] = []

    def credit_liquidity_providers(self, amount: int, asset: str) -> None:
        self.messages.append(CreditLiquidityProviders(amount=amount, asset=asset))

    def credit_price_taker(self, recipient: str, amount: int, asset: str) -> None:
        self.messages.append(CreditPriceTaker(recipient=recipient, amount=amount, asset=asset))

    def notify_liquidation(
        self, position_id: int, debt_repaid: int, collateral_liquidated: int, fully_liquidated: bool,
    ) -> None:
        self.messages.append(
            NotifyLiquidation(
                position_id=position_id,
                debt_repaid=debt_repaid,
                collateral_liquidated=collateral_liquidated,
                fully_liquidated=fully_liquidated,
            )
        )

    def return_collateral(self, owner: str, amount: int, asset: str) -> None:
        self.messages.append(ReturnCollateral(owner=owner, amount=amount, asset=asset))

    def of_type(self, cls: type) -> list:
        return [m for m in self.messages if isinstance(m, cls)]

    def total(self, cls: type) -> int:
        return sum(m.amount for m in self.of_type(cls))


class NullSink:
    """Sink that discards everything."""

    def credit_liquidity_providers(self, amount: int, asset: str) -> None:
        pass

    def credit_price_taker(self, recipient: str, amount: int, asset: str) -> None:
        pass

    def notify_liquidation(
        self, position_id: int, debt_repaid: int, collateral_liquidated: int, fully_liquidated: bool,
    ) -> None:
        pass

    def return_collateral(self, owner: str, amount: int, asset: str) -> None:
        pass
