"""Inventory limit that plans a partial rebalance of the net position."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from depth_bot.config.constants import BUY, SELL
from depth_bot.execution.order import Ticker


@dataclass(frozen=True)
class RebalancePlan:
    """Limit order that moves the net position back toward flat."""

    side: str
    amount: float
    price: float


class InventoryLimiter:
    """Triggers when the absolute net position exceeds a threshold."""

    def __init__(self, threshold: Optional[float], fraction: float = 0.5) -> None:
        self.threshold = threshold
        self.fraction = fraction

    def plan(self, net_position: float, ticker: Ticker) -> Optional[RebalancePlan]:
        """Return a rebalance order for ``fraction`` of the position, or ``None``."""
        if self.threshold is None or abs(net_position) <= self.threshold:
            return None
        amount = abs(net_position) * self.fraction
        if amount <= 0:
            return None
        if net_position > 0:
            return RebalancePlan(side=SELL, amount=amount, price=ticker.ask)
        return RebalancePlan(side=BUY, amount=amount, price=ticker.bid)
