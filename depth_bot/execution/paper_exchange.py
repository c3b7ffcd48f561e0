"""In-memory exchange with deterministic simulated fills for paper runs."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import random
from typing import Callable, Optional
from uuid import uuid4

from depth_bot.accounting.balance import BalanceSnapshot
from depth_bot.config.constants import (
    BUY,
    LIMIT,
    SELL,
    STATUS_CANCELED,
    STATUS_FILLED,
    STATUS_NEW,
    STATUS_PARTIALLY_FILLED,
)
from depth_bot.execution.exchange import OrderNotFoundError, OrderRejectedError
from depth_bot.execution.order import OpenOrder, OrderHandle, Ticker, Trade


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaperExchange:
    """Single-pair exchange simulation implementing ``ExchangeClient``.

    Resting limit orders lock funds on placement and fill when ``move_market``
    crosses their price. Closed orders stay queryable until ``purge_closed``.
    """

    def __init__(
        self,
        pair: str,
        base_asset: str,
        quote_asset: str,
        start_price: float,
        initial_quote_balance: float,
        initial_base_balance: float,
        fee_rate: float = 0.0,
        slippage_bps: float = 0.0,
        partial_fill_probability: float = 0.0,
        min_partial_fill_ratio: float = 0.3,
        max_partial_fill_ratio: float = 0.9,
        book_spread_bps: float = 10.0,
        seed: int = 42,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.pair = pair
        self.base_asset = base_asset
        self.quote_asset = quote_asset
        self.fee_rate = fee_rate
        self.slippage_bps = slippage_bps
        self.partial_fill_probability = partial_fill_probability
        self.min_partial_fill_ratio = min_partial_fill_ratio
        self.max_partial_fill_ratio = max_partial_fill_ratio
        self.book_spread_bps = book_spread_bps
        self.market_price = start_price
        self._clock = clock
        self._rng = random.Random(seed)
        self._free = {base_asset: initial_base_balance, quote_asset: initial_quote_balance}
        self._locked = {base_asset: 0.0, quote_asset: 0.0}
        self._orders: dict[str, OpenOrder] = {}
        self._trades: list[Trade] = []
        self.placed_count = 0
        self.cancelled_count = 0

    # ExchangeClient -----------------------------------------------------

    async def get_ticker(self, pair: str) -> Ticker:
        self._check_pair(pair)
        half = self.market_price * self.book_spread_bps / 20_000.0
        return Ticker(bid=self.market_price - half, ask=self.market_price + half, last=self.market_price)

    async def get_open_orders(self, pair: str) -> list[OpenOrder]:
        self._check_pair(pair)
        return [replace(o) for o in self._orders.values() if o.is_open]

    async def get_balances(self) -> list[BalanceSnapshot]:
        return [BalanceSnapshot(asset=a, free=self._free[a], locked=self._locked[a]) for a in self._free]

    async def place_order(
        self, pair: str, side: str, order_type: str, amount: float, price: Optional[float] = None
    ) -> OrderHandle:
        self._check_pair(pair)
        if side not in (BUY, SELL):
            raise OrderRejectedError(f"invalid side {side!r}")
        if amount <= 0:
            raise OrderRejectedError(f"invalid amount {amount}")
        if order_type == LIMIT:
            if price is None or price <= 0:
                raise OrderRejectedError(f"invalid price {price}")
        else:
            price = self.market_price

        order = OpenOrder(
            order_id=str(uuid4()),
            side=side,
            price=price,
            amount=amount,
            filled_amount=0.0,
            status=STATUS_NEW,
            placed_at=self._clock(),
        )
        self._lock(order)
        self._orders[order.order_id] = order
        self.placed_count += 1

        if order_type != LIMIT or self._crosses(order):
            self._fill(order)

        return OrderHandle(order.order_id, side, price, amount, order.placed_at)

    async def cancel_order(self, pair: str, order_id: str) -> bool:
        self._check_pair(pair)
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        if not order.is_open:
            return False
        self._release(order)
        order.status = STATUS_CANCELED
        self.cancelled_count += 1
        return True

    async def cancel_all_orders(self, pair: Optional[str] = None) -> int:
        if pair is not None:
            self._check_pair(pair)
        count = 0
        for order in list(self._orders.values()):
            if order.is_open:
                self._release(order)
                order.status = STATUS_CANCELED
                count += 1
        self.cancelled_count += count
        return count

    async def get_order(self, pair: str, order_id: str) -> OpenOrder:
        self._check_pair(pair)
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        return replace(order)

    async def get_recent_trades(self, pair: str, limit: int = 50, order_id: Optional[str] = None) -> list[Trade]:
        self._check_pair(pair)
        trades = [t for t in self._trades if order_id is None or t.order_id == order_id]
        return trades[-limit:]

    # Simulation controls ------------------------------------------------

    def move_market(self, price: float) -> list[Trade]:
        """Set the market price and fill every resting order it crosses."""
        self.market_price = price
        start = len(self._trades)
        for order in list(self._orders.values()):
            if order.is_open and self._crosses(order):
                self._fill(order)
        return self._trades[start:]

    def purge_closed(self) -> int:
        """Forget filled/canceled orders so later lookups report not-found."""
        closed = [oid for oid, o in self._orders.items() if not o.is_open]
        for oid in closed:
            del self._orders[oid]
        return len(closed)

    def add_resting_order(self, side: str, price: float, amount: float, placed_at: datetime) -> str:
        """Insert an already-resting order, e.g. one left over from a previous run."""
        order = OpenOrder(str(uuid4()), side, price, amount, 0.0, STATUS_NEW, placed_at)
        self._lock(order)
        self._orders[order.order_id] = order
        return order.order_id

    # Internals ----------------------------------------------------------

    def _check_pair(self, pair: str) -> None:
        if pair != self.pair:
            raise OrderRejectedError(f"unknown pair {pair!r}")

    def _crosses(self, order: OpenOrder) -> bool:
        if order.side == BUY:
            return self.market_price <= order.price
        return self.market_price >= order.price

    def _lock(self, order: OpenOrder) -> None:
        asset, need = self._requirement(order, order.amount)
        if self._free[asset] + 1e-12 < need:
            raise OrderRejectedError(f"insufficient {asset}: need {need:.8f}, free {self._free[asset]:.8f}")
        self._free[asset] -= need
        self._locked[asset] += need

    def _release(self, order: OpenOrder) -> None:
        asset, held = self._requirement(order, order.remaining)
        self._locked[asset] = max(0.0, self._locked[asset] - held)
        self._free[asset] += held

    def _requirement(self, order: OpenOrder, amount: float) -> tuple[str, float]:
        if order.side == BUY:
            return self.quote_asset, amount * order.price
        return self.base_asset, amount

    def _fill(self, order: OpenOrder) -> None:
        """Fill the remaining amount, partially with the configured probability."""
        is_partial = self._rng.random() < self.partial_fill_probability
        ratio = self._rng.uniform(self.min_partial_fill_ratio, self.max_partial_fill_ratio) if is_partial else 1.0
        qty = order.remaining * ratio

        slip = self.slippage_bps / 10_000.0
        price = order.price * (1.0 + slip if order.side == BUY else 1.0 - slip)
        fee = price * qty * self.fee_rate

        if order.side == BUY:
            held = order.price * qty
            self._locked[self.quote_asset] = max(0.0, self._locked[self.quote_asset] - held)
            self._free[self.quote_asset] += held - (price * qty) - fee
            self._free[self.base_asset] += qty
        else:
            self._locked[self.base_asset] = max(0.0, self._locked[self.base_asset] - qty)
            self._free[self.quote_asset] += (price * qty) - fee

        previous = order.filled_amount
        order.filled_amount = previous + qty
        order.avg_fill_price = ((order.avg_fill_price or 0.0) * previous + price * qty) / order.filled_amount
        order.status = STATUS_PARTIALLY_FILLED if is_partial else STATUS_FILLED

        self._trades.append(
            Trade(
                trade_id=str(uuid4()),
                order_id=order.order_id,
                side=order.side,
                price=price,
                amount=qty,
                ts=self._clock(),
            )
        )
