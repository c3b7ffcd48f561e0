"""Exchange client interface, error hierarchy and precision helpers."""

from __future__ import annotations

from math import floor
from typing import Optional, Protocol

from depth_bot.accounting.balance import BalanceSnapshot
from depth_bot.execution.order import OpenOrder, OrderHandle, Ticker, Trade


class ExchangeError(Exception):
    """Transient exchange or network failure; retried on a later tick."""


class RateLimitedError(ExchangeError):
    """Exchange asked the caller to slow down."""

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class OrderRejectedError(ExchangeError):
    """Order refused for invalid parameters or insufficient funds."""


class OrderNotFoundError(ExchangeError):
    """Order id unknown to the exchange, typically already consumed."""


class ExchangeClient(Protocol):
    """Operations the bot consumes; wire format is left to implementations."""

    async def get_ticker(self, pair: str) -> Ticker: ...

    async def get_open_orders(self, pair: str) -> list[OpenOrder]: ...

    async def get_balances(self) -> list[BalanceSnapshot]: ...

    async def place_order(
        self, pair: str, side: str, order_type: str, amount: float, price: Optional[float] = None
    ) -> OrderHandle: ...

    async def cancel_order(self, pair: str, order_id: str) -> bool: ...

    async def cancel_all_orders(self, pair: Optional[str] = None) -> int: ...

    async def get_order(self, pair: str, order_id: str) -> OpenOrder: ...

    async def get_recent_trades(self, pair: str, limit: int = 50, order_id: Optional[str] = None) -> list[Trade]: ...


def floor_amount(amount: float, decimals: int) -> float:
    """Quantize an order amount down to the exchange step."""
    if amount <= 0:
        return 0.0
    scale = 10 ** decimals
    # Nudge before flooring so 0.3 / 0.1 style float error does not drop a step.
    return floor(amount * scale + 1e-9) / scale


def round_price(price: float, decimals: int) -> float:
    return round(price, decimals)
