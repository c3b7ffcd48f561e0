"""Order models shared by the exchange interface, maintainer and tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from depth_bot.config.constants import OPEN_STATUSES, STATUS_FILLED


@dataclass(frozen=True)
class Ticker:
    """Top-of-book quote plus last trade price."""

    bid: float
    ask: float
    last: float

    @property
    def mid(self) -> float:
        if self.bid > 0 and self.ask > 0:
            return (self.bid + self.ask) / 2.0
        return self.last


@dataclass
class OpenOrder:
    """Exchange-side view of one order."""

    order_id: str
    side: str
    price: float
    amount: float
    filled_amount: float
    status: str
    placed_at: datetime
    avg_fill_price: Optional[float] = None

    @property
    def remaining(self) -> float:
        return max(0.0, self.amount - self.filled_amount)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_filled(self) -> bool:
        return self.status == STATUS_FILLED

    @property
    def fill_price(self) -> float:
        return self.avg_fill_price if self.avg_fill_price else self.price


@dataclass(frozen=True)
class OrderHandle:
    """Acknowledgement returned by a successful placement."""

    order_id: str
    side: str
    price: float
    amount: float
    placed_at: datetime


@dataclass(frozen=True)
class Trade:
    """Single execution reported by the exchange."""

    trade_id: str
    order_id: str
    side: str
    price: float
    amount: float
    ts: datetime
