"""Keeps both sides of the book populated with staggered, balance-sized limit orders."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from math import ceil
from typing import Awaitable, Callable, Optional, Sequence

from depth_bot.accounting.balance import BalanceSnapshot, find_balance
from depth_bot.accounting.pnl_tracker import FillStats
from depth_bot.config.constants import BUY, LIMIT, REASON_BELOW_MIN_ORDER_SIZE, SELL
from depth_bot.data.market_feed import PriceOracle
from depth_bot.execution.exchange import (
    ExchangeClient,
    ExchangeError,
    OrderNotFoundError,
    OrderRejectedError,
    floor_amount,
    round_price,
)
from depth_bot.execution.order import OpenOrder
from depth_bot.execution.order_cache import OrderCache, OrderRecord
from depth_bot.logging.cycle_log import get_cycle_logger
from depth_bot.logging.trade_log import get_trade_logger
from depth_bot.risk.order_guard import (
    GuardResult,
    OrderSizingGuard,
    affordable_order_count,
    compute_order_allowance,
)


@dataclass
class CycleReport:
    """What one maintenance cycle did."""

    reference_price: Optional[float] = None
    cancelled_buys: int = 0
    cancelled_sells: int = 0
    need_buys: int = 0
    need_sells: int = 0
    placed_buys: int = 0
    placed_sells: int = 0
    skipped: int = 0
    rejected: int = 0
    guard: Optional[GuardResult] = None
    aborted: Optional[str] = None
    placed_order_ids: list[str] = field(default_factory=list)

    @property
    def placed(self) -> int:
        return self.placed_buys + self.placed_sells


def split_budget(count: int, need_buys: int, need_sells: int) -> tuple[int, int]:
    """Share ``count`` affordable orders between the sides, as evenly as the needs allow."""
    buys = min(need_buys, ceil(count / 2))
    sells = min(need_sells, count - buys)
    buys = min(need_buys, count - sells)
    return buys, sells


def staggered_price(reference_price: float, side: str, index: int, base_spread: float, spread_step: float) -> float:
    offset = base_spread + index * spread_step
    if side == BUY:
        return reference_price * (1.0 - offset)
    return reference_price * (1.0 + offset)


def oldest_first_excess(orders: Sequence[OpenOrder], ceiling: int) -> list[OpenOrder]:
    """Orders to cancel so that only the ``ceiling`` most recent remain."""
    if len(orders) <= ceiling:
        return []
    ordered = sorted(orders, key=lambda o: o.placed_at)
    return ordered[: len(orders) - ceiling]


class OrderBookMaintainer:
    """One ``run_cycle`` call per placement tick; no state besides the shared cache."""

    def __init__(
        self,
        exchange: ExchangeClient,
        oracle: PriceOracle,
        guard: OrderSizingGuard,
        cache: OrderCache,
        pair: str,
        base_asset: str,
        quote_asset: str,
        target_orders_per_side: int,
        base_spread: float,
        spread_step: float,
        max_orders_per_side: Optional[int] = None,
        target_depth_notional: Optional[float] = None,
        depth_band_pct: float = 0.02,
        price_decimals: int = 8,
        amount_decimals: int = 6,
        min_amount: float = 0.0,
        inter_order_delay_seconds: float = 0.05,
        stats: Optional[FillStats] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.exchange = exchange
        self.oracle = oracle
        self.guard = guard
        self.cache = cache
        self.pair = pair
        self.base_asset = base_asset
        self.quote_asset = quote_asset
        self.target_orders_per_side = target_orders_per_side
        self.base_spread = base_spread
        self.spread_step = spread_step
        self.max_orders_per_side = max_orders_per_side
        self.target_depth_notional = target_depth_notional
        self.depth_band_pct = depth_band_pct
        self.price_decimals = price_decimals
        self.amount_decimals = amount_decimals
        self.min_amount = min_amount
        self.inter_order_delay_seconds = inter_order_delay_seconds
        self.stats = stats if stats is not None else FillStats()
        self._sleep = sleep
        self.cycle_logger = get_cycle_logger()
        self.trade_logger = get_trade_logger()

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()

        reference_price = await self._reference_price()
        if reference_price is None:
            report.aborted = "no_reference_price"
            self.cycle_logger.warning("cycle_skip reason=no_reference_price")
            return report
        report.reference_price = reference_price

        try:
            open_orders = await self.exchange.get_open_orders(self.pair)
            balances = await self.exchange.get_balances()
        except ExchangeError as exc:
            report.aborted = "exchange_unavailable"
            self.cycle_logger.warning("cycle_skip reason=exchange_unavailable error=%s", exc)
            return report

        buys = [o for o in open_orders if o.side == BUY]
        sells = [o for o in open_orders if o.side == SELL]

        if self.max_orders_per_side is not None:
            buys, report.cancelled_buys = await self._trim_excess(buys)
            sells, report.cancelled_sells = await self._trim_excess(sells)

        need_buys = self._shortfall(buys, reference_price)
        need_sells = self._shortfall(sells, reference_price)
        self.cycle_logger.info(
            "book ref=%.8f buys=%d sells=%d target=%d need_buys=%d need_sells=%d",
            reference_price,
            len(buys),
            len(sells),
            self.target_orders_per_side,
            need_buys,
            need_sells,
        )
        if need_buys + need_sells == 0:
            return report

        quote = find_balance(balances, self.quote_asset)
        reserved = self.cache.reserved_quote()
        guard_input = self.guard.build_input(quote.free, need_buys + need_sells, reserved)
        verdict = compute_order_allowance(guard_input)

        if not verdict.allowed and verdict.reason_code == REASON_BELOW_MIN_ORDER_SIZE:
            affordable = affordable_order_count(guard_input)
            if affordable > 0:
                need_buys, need_sells = split_budget(affordable, need_buys, need_sells)
                verdict = self.guard.evaluate(quote.free, need_buys + need_sells, reserved)
                self.cycle_logger.info(
                    "guard_partial affordable=%d need_buys=%d need_sells=%d", affordable, need_buys, need_sells
                )

        report.guard = verdict
        report.need_buys = need_buys
        report.need_sells = need_sells
        if not verdict.allowed:
            self.cycle_logger.info(
                "guard_reject reason=%s free=%.4f reserved=%.4f usable=%.4f",
                verdict.reason_code,
                quote.free,
                reserved,
                verdict.usable_notional,
            )
            return report

        self.cycle_logger.info(
            "guard_ok per_order=%.4f usable=%.4f orders=%d",
            verdict.per_order_notional,
            verdict.usable_notional,
            need_buys + need_sells,
        )
        lowest_sell = min((o.price for o in sells), default=None)
        highest_buy = max((o.price for o in buys), default=None)
        placed_high = await self._place_side(
            BUY, need_buys, reference_price, verdict.per_order_notional, lowest_sell, balances, report
        )
        if placed_high is not None:
            highest_buy = placed_high if highest_buy is None else max(highest_buy, placed_high)
        if report.aborted is None:
            await self._place_side(
                SELL, need_sells, reference_price, verdict.per_order_notional, highest_buy, balances, report
            )
        return report

    async def _reference_price(self) -> Optional[float]:
        try:
            price = await self.oracle.get_price()
        except (ExchangeError, OSError, ValueError) as exc:
            self.cycle_logger.warning("price_oracle_failed error=%s", exc)
            return None
        if price is None or price <= 0:
            return None
        return float(price)

    def _shortfall(self, orders: Sequence[OpenOrder], reference_price: float) -> int:
        need = max(0, self.target_orders_per_side - len(orders))
        if self.target_depth_notional:
            depth = self.side_depth(orders, reference_price)
            deficit = self.target_depth_notional - depth
            if deficit > 0:
                need = max(need, ceil(deficit / self.guard.max_order_notional))
        return need

    def side_depth(self, orders: Sequence[OpenOrder], reference_price: float) -> float:
        """Resting quote notional within the configured band around the reference price."""
        band = reference_price * self.depth_band_pct
        return sum(o.price * o.remaining for o in orders if abs(o.price - reference_price) <= band)

    async def _trim_excess(self, orders: list[OpenOrder]) -> tuple[list[OpenOrder], int]:
        excess = oldest_first_excess(orders, self.max_orders_per_side or 0)
        if not excess:
            return orders, 0

        removed: set[str] = set()
        for order in excess:
            try:
                await self.exchange.cancel_order(self.pair, order.order_id)
            except OrderNotFoundError:
                pass
            except ExchangeError as exc:
                self.trade_logger.warning("cancel_failed order_id=%s error=%s", order.order_id, exc)
                continue
            removed.add(order.order_id)
            self.cache.remove(order.order_id)
            self.stats.orders_cancelled += 1
            self.trade_logger.info("cancel_excess side=%s order_id=%s price=%.8f", order.side, order.order_id, order.price)

        return [o for o in orders if o.order_id not in removed], len(removed)

    async def _place_side(
        self,
        side: str,
        count: int,
        reference_price: float,
        per_order_notional: float,
        opposite_best: Optional[float],
        balances: Sequence[BalanceSnapshot],
        report: CycleReport,
    ) -> Optional[float]:
        """Place up to ``count`` orders on one side; return the most aggressive price placed.

        ``opposite_best`` is our own best resting price on the other side; prices that
        would cross it are skipped so the account never trades with itself.
        """
        base_available = find_balance(balances, self.base_asset).free
        best_placed: Optional[float] = None

        for i in range(count):
            price = round_price(
                staggered_price(reference_price, side, i, self.base_spread, self.spread_step), self.price_decimals
            )
            if price <= 0:
                self.cycle_logger.warning("stop_side side=%s reason=non_positive_price index=%d", side, i)
                break
            if opposite_best is not None and (
                (side == BUY and price >= opposite_best) or (side == SELL and price <= opposite_best)
            ):
                report.skipped += 1
                self.cycle_logger.warning(
                    "skip_order side=%s reason=self_trade price=%.8f own_opposite=%.8f", side, price, opposite_best
                )
                continue

            amount = floor_amount(per_order_notional / price, self.amount_decimals)
            if amount <= 0 or amount < self.min_amount:
                report.skipped += 1
                self.cycle_logger.warning(
                    "skip_order side=%s reason=amount_below_minimum amount=%.8f min=%.8f", side, amount, self.min_amount
                )
                continue
            if side == SELL and amount > base_available:
                self.cycle_logger.warning(
                    "stop_side side=SELL reason=insufficient_base need=%.8f free=%.8f", amount, base_available
                )
                break

            try:
                handle = await self.exchange.place_order(self.pair, side, LIMIT, amount, price)
            except OrderRejectedError as exc:
                report.rejected += 1
                self.trade_logger.warning("order_rejected side=%s price=%.8f amount=%.8f error=%s", side, price, amount, exc)
                continue
            except ExchangeError as exc:
                report.aborted = "placement_failed"
                self.trade_logger.warning("placement_aborted side=%s error=%s", side, exc)
                return best_placed

            self.cache.add(
                OrderRecord(
                    order_id=handle.order_id,
                    side=side,
                    intended_price=price,
                    amount=amount,
                    reference_price=reference_price,
                    placed_at=handle.placed_at,
                )
            )
            self.stats.orders_placed += 1
            report.placed_order_ids.append(handle.order_id)
            if side == BUY:
                report.placed_buys += 1
                best_placed = price if best_placed is None else max(best_placed, price)
            else:
                report.placed_sells += 1
                base_available -= amount
                best_placed = price if best_placed is None else min(best_placed, price)
            self.trade_logger.info(
                "placed side=%s [%d/%d] amount=%.8f price=%.8f notional=%.4f",
                side,
                i + 1,
                count,
                amount,
                price,
                amount * price,
            )
            if self.inter_order_delay_seconds > 0:
                await self._sleep(self.inter_order_delay_seconds)
        return best_placed
