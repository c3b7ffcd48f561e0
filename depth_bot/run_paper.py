"""Entry point for running the depth maintenance bot against the paper exchange."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Sequence

from depth_bot.config.settings import ConfigError, EngineConfig, default_settings_path
from depth_bot.data.market_feed import LiveTradePriceOracle, SyntheticMarketFeed
from depth_bot.engine import MarketMakingEngine
from depth_bot.execution.paper_exchange import PaperExchange

logger = logging.getLogger("run_paper")


def build_paper_exchange(config: EngineConfig) -> PaperExchange:
    ex = config.section("exchange")
    paper = config.section("paper")
    return PaperExchange(
        pair=ex["pair"],
        base_asset=ex["base_asset"],
        quote_asset=ex["quote_asset"],
        start_price=float(paper.get("start_price", 50000.0)),
        initial_quote_balance=float(paper.get("initial_quote_balance", 5000.0)),
        initial_base_balance=float(paper.get("initial_base_balance", 0.1)),
        fee_rate=float(paper.get("fee_rate", 0.0)),
        slippage_bps=float(paper.get("slippage_bps", 0.0)),
        partial_fill_probability=float(paper.get("partial_fill_probability", 0.0)),
        min_partial_fill_ratio=float(paper.get("min_partial_fill_ratio", 0.3)),
        max_partial_fill_ratio=float(paper.get("max_partial_fill_ratio", 0.9)),
        seed=int(paper.get("seed", 42)),
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the depth maintenance bot on a simulated exchange.")
    parser.add_argument("--config", type=Path, default=default_settings_path(), help="settings YAML path")
    parser.add_argument("--duration", type=float, default=None, help="stop after N seconds (default: run until signal)")
    parser.add_argument(
        "--live-symbol",
        default=None,
        help="follow a live Binance.US trade stream (e.g. btcusdt) instead of the synthetic walk",
    )
    return parser.parse_args(argv)


async def run(config: EngineConfig, duration: Optional[float] = None, live_symbol: Optional[str] = None) -> None:
    exchange = build_paper_exchange(config)
    feed = SyntheticMarketFeed(seed=int(config.section("paper").get("seed", 42)), start_price=exchange.market_price)
    live = LiveTradePriceOracle(symbol=live_symbol) if live_symbol else None
    engine = MarketMakingEngine(config, exchange)

    async def move_market() -> None:
        if live is None:
            exchange.move_market(feed.next_price())
            return
        price = await live.get_price()
        if price is not None:
            exchange.move_market(price)

    engine.scheduler.add("paper_market", float(config.section("engine")["poll_interval_seconds"]), move_market)

    loop = asyncio.get_running_loop()
    stream = asyncio.create_task(live.connect()) if live is not None else None
    runner = asyncio.create_task(engine.run())
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.cancel)
        except NotImplementedError:
            pass

    try:
        # wait_for cancels the engine on timeout; its shutdown still runs.
        await asyncio.wait_for(runner, timeout=duration)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        pass
    finally:
        if stream is not None:
            stream.cancel()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = EngineConfig.from_yaml(args.config)
    except ConfigError as exc:
        logger.error("config_error %s", exc)
        return 2
    print("Paper depth bot started. Press CTRL+C to stop.")
    asyncio.run(run(config, args.duration, args.live_symbol))
    print("Paper depth bot stopped cleanly.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
