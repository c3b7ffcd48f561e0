from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from depth_bot.config.settings import EngineConfig
from depth_bot.execution.order_cache import OrderCache
from depth_bot.execution.paper_exchange import PaperExchange
from depth_bot.risk.order_guard import OrderSizingGuard
from depth_bot.strategy.book_maintainer import OrderBookMaintainer

BASE_SETTINGS = {
    "exchange": {
        "pair": "TKN/USDT",
        "base_asset": "TKN",
        "quote_asset": "USDT",
        "price_decimals": 8,
        "amount_decimals": 6,
        "min_amount": 0.0,
    },
    "book": {
        "target_orders_per_side": 30,
        "max_orders_per_side": 30,
        "target_depth_notional": None,
        "depth_band_pct": 0.02,
        "base_spread": 0.003,
        "spread_step": 0.0001,
        "inter_order_delay_ms": 0,
    },
    "guard": {
        "fee_buffer": 0.5,
        "min_free": 1.0,
        "order_size_percent": 0.8,
        "max_order_notional": 20.0,
        "min_order_notional": None,
    },
    "tracker": {
        "poll_batch_size": 100,
        "backoff_base_seconds": 0.5,
        "backoff_max_seconds": 4.0,
        "max_retries": 3,
        "fill_tolerance_pct": 0.05,
    },
    "risk": {"daily_loss_limit": None, "rebalance_threshold": None, "rebalance_fraction": 0.5},
    "engine": {
        "placement_interval_seconds": 5.0,
        "poll_interval_seconds": 3.0,
        "report_interval_seconds": 60.0,
        "price_source": "last",
        "log_level": "INFO",
    },
}


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FixedOracle:
    def __init__(self, price: Optional[float]) -> None:
        self.price = price
        self.calls = 0

    async def get_price(self) -> Optional[float]:
        self.calls += 1
        return self.price


async def no_sleep(_: float) -> None:
    return None


def settings(**sections) -> dict:
    data = copy.deepcopy(BASE_SETTINGS)
    for section, values in sections.items():
        data.setdefault(section, {}).update(values)
    return data


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def exchange(clock) -> PaperExchange:
    return PaperExchange(
        pair="TKN/USDT",
        base_asset="TKN",
        quote_asset="USDT",
        start_price=1.0,
        initial_quote_balance=5000.0,
        initial_base_balance=5000.0,
        clock=clock,
    )


@pytest.fixture
def cache() -> OrderCache:
    return OrderCache()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig.from_dict(settings())


def make_guard(**overrides) -> OrderSizingGuard:
    params = dict(fee_buffer=0.5, min_free=1.0, order_size_percent=0.8, max_order_notional=20.0, min_order_notional=None)
    params.update(overrides)
    return OrderSizingGuard(**params)


def make_maintainer(exchange, cache, price: Optional[float] = 1.0, guard=None, **overrides) -> OrderBookMaintainer:
    params = dict(
        exchange=exchange,
        oracle=FixedOracle(price),
        guard=guard or make_guard(),
        cache=cache,
        pair="TKN/USDT",
        base_asset="TKN",
        quote_asset="USDT",
        target_orders_per_side=30,
        base_spread=0.003,
        spread_step=0.0001,
        price_decimals=8,
        amount_decimals=6,
        inter_order_delay_seconds=0.0,
        sleep=no_sleep,
    )
    params.update(overrides)
    return OrderBookMaintainer(**params)
