from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_guard, make_maintainer
from depth_bot.config.constants import BUY, REASON_INSUFFICIENT_FREE, SELL
from depth_bot.execution.exchange import ExchangeError, OrderRejectedError
from depth_bot.execution.order_cache import OrderRecord
from depth_bot.strategy.book_maintainer import oldest_first_excess, split_budget, staggered_price

T0 = datetime(2025, 6, 1, tzinfo=timezone.utc)


def seed_book(exchange, buys: int, sells: int) -> dict[str, list[str]]:
    """Rest orders with distinct, increasing timestamps (older first)."""
    ids = {BUY: [], SELL: []}
    for i in range(buys):
        ids[BUY].append(exchange.add_resting_order(BUY, 0.99 - i * 0.0001, 1.0, T0 + timedelta(seconds=i)))
    for i in range(sells):
        ids[SELL].append(exchange.add_resting_order(SELL, 1.01 + i * 0.0001, 1.0, T0 + timedelta(seconds=i)))
    return ids


def test_trims_oldest_orders_above_ceiling(exchange, cache):
    ids = seed_book(exchange, buys=35, sells=37)
    maintainer = make_maintainer(exchange, cache, max_orders_per_side=30)

    report = asyncio.run(maintainer.run_cycle())

    assert report.cancelled_buys == 5
    assert report.cancelled_sells == 7
    assert report.placed == 0
    remaining = asyncio.run(exchange.get_open_orders("TKN/USDT"))
    remaining_buys = {o.order_id for o in remaining if o.side == BUY}
    remaining_sells = {o.order_id for o in remaining if o.side == SELL}
    assert remaining_buys == set(ids[BUY][5:])
    assert remaining_sells == set(ids[SELL][7:])


def test_fills_empty_book_to_target(exchange, cache):
    maintainer = make_maintainer(exchange, cache)

    report = asyncio.run(maintainer.run_cycle())

    assert report.aborted is None
    assert report.placed_buys == 30
    assert report.placed_sells == 30
    orders = asyncio.run(exchange.get_open_orders("TKN/USDT"))
    assert sum(1 for o in orders if o.side == BUY) == 30
    assert sum(1 for o in orders if o.side == SELL) == 30
    assert len(cache) == 60


def test_placed_notional_matches_guard_allowance(exchange, cache):
    maintainer = make_maintainer(exchange, cache)

    report = asyncio.run(maintainer.run_cycle())

    assert report.guard.per_order_notional == pytest.approx(20.0)
    for order in asyncio.run(exchange.get_open_orders("TKN/USDT")):
        assert order.amount * order.price == pytest.approx(20.0, abs=1e-5)


def test_prices_are_staggered_away_from_reference(exchange, cache):
    maintainer = make_maintainer(exchange, cache)
    asyncio.run(maintainer.run_cycle())

    orders = asyncio.run(exchange.get_open_orders("TKN/USDT"))
    buy_prices = sorted((o.price for o in orders if o.side == BUY), reverse=True)
    sell_prices = sorted(o.price for o in orders if o.side == SELL)
    assert buy_prices[0] == pytest.approx(0.997)
    assert buy_prices[1] == pytest.approx(0.9969)
    assert sell_prices[0] == pytest.approx(1.003)
    assert sell_prices[-1] == pytest.approx(1.0 + 0.003 + 29 * 0.0001)


def test_book_at_target_places_nothing(exchange, cache):
    seed_book(exchange, buys=30, sells=30)
    maintainer = make_maintainer(exchange, cache)

    report = asyncio.run(maintainer.run_cycle())

    assert report.placed == 0
    assert report.guard is None


def test_below_target_is_a_floor_not_cancelled(exchange, cache):
    seed_book(exchange, buys=10, sells=31)
    maintainer = make_maintainer(exchange, cache, max_orders_per_side=None)

    report = asyncio.run(maintainer.run_cycle())

    assert report.cancelled_sells == 0
    assert report.placed_buys == 20
    assert report.placed_sells == 0


def test_no_reference_price_skips_cycle(exchange, cache):
    maintainer = make_maintainer(exchange, cache, price=None)

    report = asyncio.run(maintainer.run_cycle())

    assert report.aborted == "no_reference_price"
    assert exchange.placed_count == 0


def test_zero_reference_price_skips_cycle(exchange, cache):
    report = asyncio.run(make_maintainer(exchange, cache, price=0.0).run_cycle())
    assert report.aborted == "no_reference_price"


def test_exchange_failure_skips_cycle(exchange, cache):
    async def broken(pair):
        raise ExchangeError("timeout")

    exchange.get_open_orders = broken
    report = asyncio.run(make_maintainer(exchange, cache).run_cycle())

    assert report.aborted == "exchange_unavailable"
    assert exchange.placed_count == 0


def test_guard_rejection_places_nothing(exchange, cache):
    exchange._free["USDT"] = 0.9
    report = asyncio.run(make_maintainer(exchange, cache).run_cycle())

    assert report.guard.allowed is False
    assert report.guard.reason_code == REASON_INSUFFICIENT_FREE
    assert exchange.placed_count == 0


def test_reserved_balance_from_cache_reduces_size(exchange, cache):
    exchange._free["USDT"] = 100.5
    cache.add(OrderRecord("old", BUY, 1.0, 50.0, 1.0, T0))
    maintainer = make_maintainer(exchange, cache, target_orders_per_side=1)

    report = asyncio.run(maintainer.run_cycle())

    # usable = 100.5 - 0.5 - 50 = 50 -> 50 * 0.8 / 2 = 20
    assert report.guard.usable_notional == pytest.approx(50.0)
    assert report.guard.per_order_notional == pytest.approx(20.0)


def test_places_affordable_subset_when_min_size_binds(exchange, cache):
    exchange._free["USDT"] = 50.5
    guard = make_guard(min_order_notional=5.0)
    maintainer = make_maintainer(exchange, cache, guard=guard)

    report = asyncio.run(maintainer.run_cycle())

    assert report.guard.allowed is True
    assert report.placed == 8
    assert report.placed_buys == 4
    assert report.placed_sells == 4


def test_amount_rounding_to_zero_is_never_submitted(exchange, cache):
    maintainer = make_maintainer(exchange, cache, amount_decimals=0, target_orders_per_side=2)
    maintainer.oracle.price = 100.0

    report = asyncio.run(maintainer.run_cycle())

    # 20 USDT / ~100 per token floors to 0 whole tokens.
    assert report.placed == 0
    assert report.skipped == 4
    assert exchange.placed_count == 0


def test_amount_below_exchange_minimum_is_skipped(exchange, cache):
    maintainer = make_maintainer(exchange, cache, min_amount=100.0, target_orders_per_side=1)
    report = asyncio.run(maintainer.run_cycle())
    assert report.placed == 0
    assert report.skipped == 2


def test_rejected_order_does_not_abort_batch(exchange, cache):
    original = exchange.place_order
    calls = {"n": 0}

    async def flaky(pair, side, order_type, amount, price=None):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OrderRejectedError("price out of range")
        return await original(pair, side, order_type, amount, price)

    exchange.place_order = flaky
    report = asyncio.run(make_maintainer(exchange, cache, target_orders_per_side=3).run_cycle())

    assert report.rejected == 1
    assert report.placed == 5


def test_transient_placement_error_ends_cycle(exchange, cache):
    async def down(pair, side, order_type, amount, price=None):
        raise ExchangeError("connection reset")

    exchange.place_order = down
    report = asyncio.run(make_maintainer(exchange, cache, target_orders_per_side=3).run_cycle())

    assert report.aborted == "placement_failed"
    assert report.placed == 0


def test_sells_stop_when_base_balance_runs_out(exchange, cache):
    exchange._free["TKN"] = 50.0
    report = asyncio.run(make_maintainer(exchange, cache).run_cycle())

    # Each sell needs ~19.9 TKN, so only two fit.
    assert report.placed_sells == 2
    assert report.placed_buys == 30


def test_never_crosses_own_resting_orders(exchange, cache):
    # A stale own ask below the new reference would be crossed by fresh bids.
    exchange.add_resting_order(SELL, 0.9969, 1.0, T0)
    maintainer = make_maintainer(exchange, cache, target_orders_per_side=3, max_orders_per_side=None)

    report = asyncio.run(maintainer.run_cycle())

    placed_buys = [o for o in asyncio.run(exchange.get_open_orders("TKN/USDT")) if o.side == BUY]
    assert [o.price for o in placed_buys] == [pytest.approx(0.9968)]
    assert report.placed_buys == 1
    assert report.skipped == 2
    assert report.placed_sells == 2
    assert not exchange._trades


def test_depth_target_raises_shortfall(exchange, cache):
    maintainer = make_maintainer(
        exchange, cache, target_orders_per_side=0, max_orders_per_side=None, target_depth_notional=100.0
    )

    report = asyncio.run(maintainer.run_cycle())

    assert report.placed_buys == 5
    assert report.placed_sells == 5


def test_tracks_placed_orders_with_intended_price(exchange, cache):
    report = asyncio.run(make_maintainer(exchange, cache, target_orders_per_side=1).run_cycle())

    records = {r.order_id: r for r in cache}
    assert set(records) == set(report.placed_order_ids)
    buy = next(r for r in records.values() if r.side == BUY)
    assert buy.intended_price == pytest.approx(0.997)
    assert buy.reference_price == 1.0


def test_split_budget():
    assert split_budget(8, 30, 30) == (4, 4)
    assert split_budget(5, 30, 30) == (3, 2)
    assert split_budget(8, 1, 30) == (1, 7)
    assert split_budget(8, 30, 2) == (6, 2)


def test_staggered_price():
    assert staggered_price(100.0, BUY, 2, 0.01, 0.001) == pytest.approx(98.8)
    assert staggered_price(100.0, SELL, 2, 0.01, 0.001) == pytest.approx(101.2)


def test_oldest_first_excess_keeps_newest():
    class O:
        def __init__(self, i):
            self.order_id = str(i)
            self.placed_at = T0 + timedelta(seconds=i)

    orders = [O(i) for i in (4, 0, 3, 1, 2)]
    assert [o.order_id for o in oldest_first_excess(orders, 3)] == ["0", "1"]
    assert oldest_first_excess(orders, 5) == []
