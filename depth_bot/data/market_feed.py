"""Reference price sources for the book maintainer."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import random
import time
from typing import Optional, Protocol

import websockets
from websockets.exceptions import WebSocketException

from depth_bot.execution.exchange import ExchangeClient, ExchangeError

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    """Async source of a single reference price; ``None`` means unavailable."""

    async def get_price(self) -> Optional[float]: ...


class TickerPriceOracle:
    """Reference price from the exchange ticker (mid or last)."""

    def __init__(self, exchange: ExchangeClient, pair: str, source: str = "mid") -> None:
        self.exchange = exchange
        self.pair = pair
        self.source = source

    async def get_price(self) -> Optional[float]:
        try:
            ticker = await self.exchange.get_ticker(self.pair)
        except ExchangeError as exc:
            logger.warning("ticker_unavailable pair=%s error=%s", self.pair, exc)
            return None
        price = ticker.mid if self.source == "mid" else ticker.last
        return price if price and price > 0 else None


class SyntheticMarketFeed:
    """Deterministic price walk suitable for driving a paper exchange."""

    def __init__(self, seed: int = 42, start_price: float = 50000.0) -> None:
        self._rng = random.Random(seed)
        self._price = start_price
        self._step = 0

    def next_price(self) -> float:
        """Advance one step with bounded noise around a mild sinusoid."""
        wave = math.sin(self._step / 40.0) * 0.0008
        noise = self._rng.uniform(-0.0015, 0.0015)
        self._price = max(1e-9, self._price * (1.0 + wave + noise))
        self._step += 1
        return self._price


class LiveTradePriceOracle:
    """Latest trade price from the Binance.US public trade stream."""

    BINANCE_WS_URL = "wss://stream.binance.us:9443/ws"

    def __init__(self, symbol: str = "btcusdt", max_age_seconds: float = 30.0) -> None:
        self.symbol = symbol.lower()
        self.max_age_seconds = max_age_seconds
        self._price: Optional[float] = None
        self._updated_at = 0.0

    async def connect(self) -> None:
        """Consume the trade stream, reconnecting after drops until cancelled."""
        url = f"{self.BINANCE_WS_URL}/{self.symbol}@trade"
        while True:
            try:
                async with websockets.connect(url) as ws:
                    async for message in ws:
                        self._handle_message(json.loads(message))
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException, ValueError) as exc:
                logger.warning("price_stream_dropped symbol=%s error=%s", self.symbol, exc)
                await asyncio.sleep(5)

    def _handle_message(self, msg: dict) -> None:
        price = float(msg["p"])
        if price > 0:
            self._price = price
            self._updated_at = time.monotonic()

    async def get_price(self) -> Optional[float]:
        if self._price is None:
            return None
        if time.monotonic() - self._updated_at > self.max_age_seconds:
            logger.warning("price_stale symbol=%s age=%.1fs", self.symbol, time.monotonic() - self._updated_at)
            return None
        return self._price
