"""Balance-constrained order sizing with conservative safety checks."""

from __future__ import annotations

from dataclasses import dataclass, replace
from math import floor
from typing import Optional

from depth_bot.config.constants import (
    REASON_BELOW_MIN_ORDER_SIZE,
    REASON_INSUFFICIENT_AFTER_RESERVATIONS,
    REASON_INSUFFICIENT_FREE,
)


@dataclass(frozen=True)
class GuardInput:
    """Everything the guard needs to size one placement batch."""

    free_quote_balance: float
    orders_to_place_count: int
    reserved_quote_balance: float
    fee_buffer_amount: float
    min_free_threshold: float
    order_size_percent: float
    max_per_order_cap: float
    min_order_size: Optional[float] = None


@dataclass(frozen=True)
class GuardResult:
    """Guard verdict; a rejection carries a reason code instead of raising."""

    allowed: bool
    per_order_notional: float
    usable_notional: float
    reason_code: Optional[str] = None


def usable_notional(free_quote_balance: float, fee_buffer_amount: float, reserved_quote_balance: float) -> float:
    return max(0.0, free_quote_balance - fee_buffer_amount - reserved_quote_balance)


def compute_order_allowance(params: GuardInput) -> GuardResult:
    """Return the per-order quote notional a batch may use, or a rejection.

    Pure function: no I/O, no randomness, no state between calls.
    """
    usable = usable_notional(params.free_quote_balance, params.fee_buffer_amount, params.reserved_quote_balance)

    if params.free_quote_balance <= params.min_free_threshold:
        return GuardResult(False, 0.0, usable, REASON_INSUFFICIENT_FREE)
    if usable <= 0:
        return GuardResult(False, 0.0, usable, REASON_INSUFFICIENT_AFTER_RESERVATIONS)

    count = max(1, params.orders_to_place_count)
    per_order = min(params.max_per_order_cap, usable * params.order_size_percent / count)

    if params.min_order_size is not None and per_order < params.min_order_size:
        return GuardResult(False, 0.0, usable, REASON_BELOW_MIN_ORDER_SIZE)
    if per_order <= 0:
        return GuardResult(False, 0.0, usable, REASON_INSUFFICIENT_AFTER_RESERVATIONS)

    return GuardResult(True, per_order, usable)


def affordable_order_count(params: GuardInput) -> int:
    """Largest batch size (<= requested) the guard would still approve."""
    if compute_order_allowance(replace(params, orders_to_place_count=1)).allowed is False:
        return 0
    if params.min_order_size is None or params.min_order_size <= 0:
        return max(0, params.orders_to_place_count)

    usable = usable_notional(params.free_quote_balance, params.fee_buffer_amount, params.reserved_quote_balance)
    budget = usable * params.order_size_percent
    count = min(params.orders_to_place_count, floor(budget / params.min_order_size))
    # Float division can land one past the boundary.
    while count > 0 and not compute_order_allowance(replace(params, orders_to_place_count=count)).allowed:
        count -= 1
    return max(0, count)


class OrderSizingGuard:
    """Binds the configured buffers and caps; callers supply live balances."""

    def __init__(
        self,
        fee_buffer: float,
        min_free: float,
        order_size_percent: float,
        max_order_notional: float,
        min_order_notional: Optional[float] = None,
    ) -> None:
        self.fee_buffer = fee_buffer
        self.min_free = min_free
        self.order_size_percent = order_size_percent
        self.max_order_notional = max_order_notional
        self.min_order_notional = min_order_notional

    def build_input(self, free_quote: float, orders_to_place: int, reserved_quote: float) -> GuardInput:
        return GuardInput(
            free_quote_balance=free_quote,
            orders_to_place_count=orders_to_place,
            reserved_quote_balance=reserved_quote,
            fee_buffer_amount=self.fee_buffer,
            min_free_threshold=self.min_free,
            order_size_percent=self.order_size_percent,
            max_per_order_cap=self.max_order_notional,
            min_order_size=self.min_order_notional,
        )

    def evaluate(self, free_quote: float, orders_to_place: int, reserved_quote: float) -> GuardResult:
        return compute_order_allowance(self.build_input(free_quote, orders_to_place, reserved_quote))
