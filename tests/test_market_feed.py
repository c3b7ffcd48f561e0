from __future__ import annotations

import asyncio

import pytest

from depth_bot.data.market_feed import LiveTradePriceOracle, SyntheticMarketFeed, TickerPriceOracle
from depth_bot.execution.exchange import ExchangeError
from depth_bot.execution.order import Ticker


class StubExchange:
    def __init__(self, ticker=None, error=None):
        self.ticker = ticker
        self.error = error

    async def get_ticker(self, pair):
        if self.error:
            raise self.error
        return self.ticker


def test_ticker_oracle_mid_and_last():
    stub = StubExchange(Ticker(bid=0.99, ask=1.01, last=1.005))
    assert asyncio.run(TickerPriceOracle(stub, "TKN/USDT", "mid").get_price()) == pytest.approx(1.0)
    assert asyncio.run(TickerPriceOracle(stub, "TKN/USDT", "last").get_price()) == pytest.approx(1.005)


def test_ticker_oracle_failure_means_no_price():
    oracle = TickerPriceOracle(StubExchange(error=ExchangeError("timeout")), "TKN/USDT")
    assert asyncio.run(oracle.get_price()) is None


def test_ticker_oracle_zero_price_means_no_price():
    oracle = TickerPriceOracle(StubExchange(Ticker(bid=0.0, ask=0.0, last=0.0)), "TKN/USDT")
    assert asyncio.run(oracle.get_price()) is None


def test_synthetic_feed_is_deterministic():
    a = SyntheticMarketFeed(seed=7, start_price=100.0)
    b = SyntheticMarketFeed(seed=7, start_price=100.0)
    prices = [a.next_price() for _ in range(50)]
    assert prices == [b.next_price() for _ in range(50)]
    assert all(90.0 < p < 110.0 for p in prices)


def test_live_oracle_tracks_latest_trade():
    oracle = LiveTradePriceOracle("tknusdt", max_age_seconds=5.0)
    assert asyncio.run(oracle.get_price()) is None

    oracle._handle_message({"p": "1.2345", "T": 1700000000000})
    assert asyncio.run(oracle.get_price()) == pytest.approx(1.2345)

    oracle._updated_at -= 10.0
    assert asyncio.run(oracle.get_price()) is None
