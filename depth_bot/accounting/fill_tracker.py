"""Reconciles tracked orders with exchange status and accumulates fill stats."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, Optional

from depth_bot.accounting.pnl_tracker import FillStats
from depth_bot.config.constants import FILL_AT_QUOTE, FILL_OFF_QUOTE, STATUS_CANCELED, STATUS_FILLED
from depth_bot.execution.exchange import ExchangeClient, ExchangeError, OrderNotFoundError, RateLimitedError
from depth_bot.execution.order import OpenOrder
from depth_bot.execution.order_cache import OrderCache, OrderRecord
from depth_bot.logging.trade_log import get_trade_logger


def classify_fill(intended_price: float, fill_price: float, tolerance_pct: float) -> str:
    """Tag a fill ``at_quote`` when it lands within ``tolerance_pct`` percentage points."""
    if intended_price <= 0:
        return FILL_OFF_QUOTE
    deviation_pct = abs(fill_price - intended_price) / intended_price * 100.0
    # Tolerance is compared with a small epsilon so 0.05 vs 0.0500000001 is not off-quote.
    return FILL_AT_QUOTE if deviation_pct <= tolerance_pct + 1e-9 else FILL_OFF_QUOTE


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(cap, base * (2 ** attempt))


@dataclass
class PollReport:
    """Outcome of one polling tick."""

    checked: int = 0
    filled: int = 0
    cancelled: int = 0
    pruned_missing: int = 0
    errors: int = 0
    rate_limited: int = 0


class FillTracker:
    """Polls a rotating subset of tracked orders each tick."""

    def __init__(
        self,
        exchange: ExchangeClient,
        cache: OrderCache,
        pair: str,
        stats: Optional[FillStats] = None,
        batch_size: int = 20,
        tolerance_pct: float = 0.05,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.exchange = exchange
        self.cache = cache
        self.pair = pair
        self.stats = stats if stats is not None else FillStats()
        self.batch_size = batch_size
        self.tolerance_pct = tolerance_pct
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.max_retries = max_retries
        self._sleep = sleep
        self.trade_logger = get_trade_logger()

    async def poll_once(self) -> PollReport:
        """Check the next batch of tracked orders and update stats."""
        report = PollReport()
        for record in self.cache.next_batch(self.batch_size):
            report.checked += 1
            order = await self._fetch_with_backoff(record, report)
            if order is None:
                continue
            if order.status == STATUS_FILLED:
                self._record(record, order)
                self.cache.remove(record.order_id)
                report.filled += 1
            elif order.status == STATUS_CANCELED:
                if order.filled_amount > 0:
                    self._record(record, order)
                self.cache.remove(record.order_id)
                report.cancelled += 1
        return report

    async def _fetch_with_backoff(self, record: OrderRecord, report: PollReport) -> Optional[OpenOrder]:
        attempt = 0
        while True:
            try:
                return await self.exchange.get_order(self.pair, record.order_id)
            except RateLimitedError as exc:
                report.rate_limited += 1
                if attempt >= self.max_retries:
                    self.trade_logger.warning(
                        "poll_rate_limited order_id=%s attempts=%d keeping_for_next_tick", record.order_id, attempt + 1
                    )
                    return None
                delay = backoff_delay(attempt, self.backoff_base_seconds, self.backoff_max_seconds)
                if exc.retry_after is not None:
                    delay = min(self.backoff_max_seconds, max(delay, exc.retry_after))
                self.trade_logger.info("poll_backoff order_id=%s delay=%.2fs", record.order_id, delay)
                await self._sleep(delay)
                attempt += 1
            except OrderNotFoundError:
                # Already consumed on the exchange side; the record is stale.
                self.cache.remove(record.order_id)
                report.pruned_missing += 1
                self.trade_logger.debug("order_gone order_id=%s pruned", record.order_id)
                return None
            except ExchangeError as exc:
                report.errors += 1
                self.trade_logger.warning("poll_failed order_id=%s error=%s", record.order_id, exc)
                return None

    def _record(self, record: OrderRecord, order: OpenOrder) -> None:
        fill_price = order.fill_price
        classification = classify_fill(record.intended_price, fill_price, self.tolerance_pct)
        profit = self.stats.record_fill(
            side=record.side,
            amount=order.filled_amount,
            fill_price=fill_price,
            intended_price=record.intended_price,
            reference_price=record.reference_price,
            classification=classification,
        )
        self.trade_logger.info(
            "fill side=%s qty=%.8f price=%.8f intended=%.8f class=%s profit=%.6f volume=%.2f",
            record.side,
            order.filled_amount,
            fill_price,
            record.intended_price,
            classification,
            profit,
            self.stats.total_volume,
        )
