"""Volume and profit statistics accumulated from observed fills."""

from __future__ import annotations

from dataclasses import dataclass, field
import time

from depth_bot.config.constants import BUY, FILL_AT_QUOTE


@dataclass
class FillStats:
    """Per-instance counters; lives as long as the engine that owns it."""

    total_volume: float = 0.0
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    fill_count: int = 0
    at_quote_fills: int = 0
    off_quote_fills: int = 0
    total_profit: float = 0.0
    best_profit: float = 0.0
    spread_capture: float = 0.0
    net_position: float = 0.0
    orders_placed: int = 0
    orders_cancelled: int = 0
    started_at: float = field(default_factory=time.time)

    def record_fill(
        self,
        side: str,
        amount: float,
        fill_price: float,
        intended_price: float,
        reference_price: float,
        classification: str,
    ) -> float:
        """Accumulate one fill and return its profit versus the intended price."""
        notional = amount * fill_price
        self.total_volume += notional
        self.fill_count += 1

        if side == BUY:
            self.buy_volume += notional
            self.net_position += amount
            profit = (intended_price - fill_price) * amount
            self.spread_capture += (reference_price - fill_price) * amount
        else:
            self.sell_volume += notional
            self.net_position -= amount
            profit = (fill_price - intended_price) * amount
            self.spread_capture += (fill_price - reference_price) * amount

        self.total_profit += profit
        self.best_profit = max(self.best_profit, profit)

        if classification == FILL_AT_QUOTE:
            self.at_quote_fills += 1
        else:
            self.off_quote_fills += 1
        return profit

    def runtime_hours(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, now - self.started_at) / 3600.0

    def volume_rate_per_day(self, now: float | None = None) -> float:
        """Observed volume extrapolated to 24 hours."""
        hours = self.runtime_hours(now)
        if hours <= 0:
            return 0.0
        return self.total_volume / hours * 24.0

    @property
    def at_quote_ratio(self) -> float:
        if self.fill_count == 0:
            return 0.0
        return self.at_quote_fills / self.fill_count
