"""Main orchestration engine for the depth maintenance bot."""

from __future__ import annotations

import logging
from typing import Any, Optional

from depth_bot.accounting.balance import find_balance
from depth_bot.accounting.fill_tracker import FillTracker, PollReport
from depth_bot.accounting.pnl_tracker import FillStats
from depth_bot.config.constants import LIMIT
from depth_bot.config.settings import EngineConfig
from depth_bot.data.market_feed import PriceOracle, TickerPriceOracle
from depth_bot.execution.exchange import ExchangeClient, ExchangeError, floor_amount, round_price
from depth_bot.execution.order_cache import OrderCache, OrderRecord
from depth_bot.logging.cycle_log import get_cycle_logger
from depth_bot.logging.metrics import summarize_metrics
from depth_bot.logging.trade_log import get_trade_logger
from depth_bot.risk.daily_limits import DailyLimits
from depth_bot.risk.inventory import InventoryLimiter
from depth_bot.risk.order_guard import OrderSizingGuard
from depth_bot.scheduler import IntervalScheduler
from depth_bot.strategy.book_maintainer import CycleReport, OrderBookMaintainer

PLACEMENT_TASK = "placement"
MONITOR_TASK = "monitor"
REPORT_TASK = "report"


class MarketMakingEngine:
    def __init__(
        self,
        config: EngineConfig,
        exchange: ExchangeClient,
        oracle: Optional[PriceOracle] = None,
        scheduler: Optional[IntervalScheduler] = None,
    ) -> None:
        cfg = config.raw
        ex = cfg["exchange"]
        book = cfg["book"]
        guard = cfg["guard"]
        tracker = cfg["tracker"]
        risk = cfg["risk"]
        engine = cfg["engine"]

        self.exchange = exchange
        self.pair = ex["pair"]
        self.base_asset = ex["base_asset"]
        self.quote_asset = ex["quote_asset"]
        self.price_decimals = int(ex.get("price_decimals", 8))
        self.amount_decimals = int(ex.get("amount_decimals", 6))
        self.min_amount = float(ex.get("min_amount") or 0.0)

        self.oracle = oracle or TickerPriceOracle(exchange, self.pair, source=engine.get("price_source", "mid"))
        self.cache = OrderCache()
        self.stats = FillStats()
        self.guard = OrderSizingGuard(
            fee_buffer=float(guard["fee_buffer"]),
            min_free=float(guard["min_free"]),
            order_size_percent=float(guard["order_size_percent"]),
            max_order_notional=float(guard["max_order_notional"]),
            min_order_notional=guard.get("min_order_notional"),
        )
        self.maintainer = OrderBookMaintainer(
            exchange=exchange,
            oracle=self.oracle,
            guard=self.guard,
            cache=self.cache,
            pair=self.pair,
            base_asset=self.base_asset,
            quote_asset=self.quote_asset,
            target_orders_per_side=int(book["target_orders_per_side"]),
            base_spread=float(book["base_spread"]),
            spread_step=float(book["spread_step"]),
            max_orders_per_side=book.get("max_orders_per_side"),
            target_depth_notional=book.get("target_depth_notional"),
            depth_band_pct=float(book.get("depth_band_pct", 0.02)),
            price_decimals=self.price_decimals,
            amount_decimals=self.amount_decimals,
            min_amount=self.min_amount,
            inter_order_delay_seconds=float(book.get("inter_order_delay_ms", 50)) / 1000.0,
            stats=self.stats,
        )
        self.tracker = FillTracker(
            exchange=exchange,
            cache=self.cache,
            pair=self.pair,
            stats=self.stats,
            batch_size=int(tracker["poll_batch_size"]),
            tolerance_pct=float(tracker.get("fill_tolerance_pct", 0.05)),
            backoff_base_seconds=float(tracker.get("backoff_base_seconds", 0.5)),
            backoff_max_seconds=float(tracker.get("backoff_max_seconds", 8.0)),
            max_retries=int(tracker.get("max_retries", 3)),
        )
        self.limits = DailyLimits(daily_loss_limit=risk.get("daily_loss_limit"))
        self.inventory = InventoryLimiter(
            threshold=risk.get("rebalance_threshold"),
            fraction=float(risk.get("rebalance_fraction", 0.5)),
        )
        self.scheduler = scheduler or IntervalScheduler()
        self.scheduler.add(PLACEMENT_TASK, float(engine["placement_interval_seconds"]), self.placement_cycle)
        self.scheduler.add(MONITOR_TASK, float(engine["poll_interval_seconds"]), self.monitor_cycle)
        self.scheduler.add(REPORT_TASK, float(engine.get("report_interval_seconds", 60.0)), self.report)

        self.cycle_logger = get_cycle_logger(engine.get("log_level", "INFO"))
        self.trade_logger = get_trade_logger(engine.get("log_level", "INFO"))
        self.halted_reason: Optional[str] = None
        self.rebalance_order_id: Optional[str] = None
        self.started = False

    async def start(self) -> None:
        """Clear leftover orders and log balances; failures only warn."""
        self.cycle_logger.info("engine_start pair=%s", self.pair)
        try:
            cancelled = await self.exchange.cancel_all_orders(self.pair)
            self.cycle_logger.info("startup_cancel_all cancelled=%d", cancelled)
        except ExchangeError as exc:
            self.cycle_logger.warning("startup_cancel_all_failed error=%s", exc)
        await self.log_balances()
        self.started = True

    async def run(self) -> None:
        if not self.started:
            await self.start()
        try:
            await self.scheduler.run()
        finally:
            await self.shutdown()

    async def placement_cycle(self) -> Optional[CycleReport]:
        allowed, reason = self.limits.can_continue(self.stats.spread_capture)
        if not allowed:
            if self.halted_reason != reason:
                self.cycle_logger.warning("placement_halted reason=%s pnl=%.4f", reason, self.stats.spread_capture)
            self.halted_reason = reason
            return None
        return await self.maintainer.run_cycle()

    async def monitor_cycle(self) -> PollReport:
        report = await self.tracker.poll_once()
        await self.rebalance_inventory()
        return report

    async def rebalance_inventory(self) -> bool:
        """Cancel the book and lean against the net position when it exceeds the limit."""
        if self.inventory.threshold is None or abs(self.stats.net_position) <= self.inventory.threshold:
            return False
        if self.rebalance_order_id is not None and self.rebalance_order_id in self.cache:
            return False
        try:
            ticker = await self.exchange.get_ticker(self.pair)
        except ExchangeError as exc:
            self.cycle_logger.warning("rebalance_skipped error=%s", exc)
            return False
        plan = self.inventory.plan(self.stats.net_position, ticker)
        if plan is None:
            return False

        amount = floor_amount(plan.amount, self.amount_decimals)
        price = round_price(plan.price, self.price_decimals)
        if amount <= 0 or amount < self.min_amount or price <= 0:
            self.cycle_logger.warning("rebalance_skipped reason=amount_below_minimum amount=%.8f", amount)
            return False

        self.cycle_logger.warning(
            "rebalance position=%.8f side=%s amount=%.8f price=%.8f", self.stats.net_position, plan.side, amount, price
        )
        try:
            cancelled = await self.exchange.cancel_all_orders(self.pair)
            self.cache.clear()
            self.stats.orders_cancelled += cancelled
            handle = await self.exchange.place_order(self.pair, plan.side, LIMIT, amount, price)
        except ExchangeError as exc:
            self.cycle_logger.warning("rebalance_failed error=%s", exc)
            return False
        self.stats.orders_placed += 1
        self.rebalance_order_id = handle.order_id
        self.cache.add(
            OrderRecord(
                order_id=handle.order_id,
                side=plan.side,
                intended_price=price,
                amount=amount,
                reference_price=ticker.mid,
                placed_at=handle.placed_at,
            )
        )
        return True

    async def log_balances(self) -> None:
        try:
            balances = await self.exchange.get_balances()
        except ExchangeError as exc:
            self.cycle_logger.warning("balances_unavailable error=%s", exc)
            return
        for asset in (self.base_asset, self.quote_asset):
            b = find_balance(balances, asset)
            self.cycle_logger.info("balance asset=%s free=%.8f locked=%.8f", asset, b.free, b.locked)

    async def report(self) -> dict[str, Any]:
        metrics = summarize_metrics(self.stats, active_orders=len(self.cache))
        self.cycle_logger.info(" ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}" for k, v in metrics.items()))
        return metrics

    async def shutdown(self) -> dict[str, Any]:
        """Stop timers, cancel outstanding orders best-effort, report a summary."""
        await self.scheduler.stop()
        try:
            cancelled = await self.exchange.cancel_all_orders(self.pair)
            self.cache.clear()
            self.cycle_logger.info("shutdown_cancel_all cancelled=%d", cancelled)
        except ExchangeError as exc:
            self.cycle_logger.warning("shutdown_cancel_all_failed error=%s", exc)
        metrics = await self.report()
        for logger in (self.cycle_logger, self.trade_logger, logging.getLogger()):
            for handler in logger.handlers:
                handler.flush()
        self.started = False
        return metrics
