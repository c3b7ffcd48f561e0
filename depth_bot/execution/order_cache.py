"""Local tracking map of orders this process placed.

The exchange stays authoritative. Records leave the cache only at defined
reconciliation points: a FILLED/CANCELED observation, a not-found response,
an explicit cancel, or a bulk clear after cancel-all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from depth_bot.config.constants import BUY, SELL


@dataclass(frozen=True)
class OrderRecord:
    """What was intended when an order was placed."""

    order_id: str
    side: str
    intended_price: float
    amount: float
    reference_price: float
    placed_at: datetime


class OrderCache:
    """Insertion-ordered order map with a rotating poll cursor."""

    def __init__(self) -> None:
        self._records: dict[str, OrderRecord] = {}
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._records

    def __iter__(self) -> Iterator[OrderRecord]:
        return iter(list(self._records.values()))

    def add(self, record: OrderRecord) -> None:
        self._records[record.order_id] = record

    def get(self, order_id: str) -> Optional[OrderRecord]:
        return self._records.get(order_id)

    def remove(self, order_id: str) -> Optional[OrderRecord]:
        return self._records.pop(order_id, None)

    def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        self._cursor = 0
        return count

    def reserved_quote(self) -> float:
        """Quote notional committed to tracked BUY orders at their intended price."""
        return sum(r.intended_price * r.amount for r in self._records.values() if r.side == BUY)

    def reserved_base(self) -> float:
        """Base amount committed to tracked SELL orders."""
        return sum(r.amount for r in self._records.values() if r.side == SELL)

    def next_batch(self, size: int) -> list[OrderRecord]:
        """Return up to ``size`` records, continuing where the previous batch stopped."""
        records = list(self._records.values())
        if not records or size <= 0:
            return []
        if size >= len(records):
            self._cursor = 0
            return records

        start = self._cursor % len(records)
        batch = [records[(start + i) % len(records)] for i in range(size)]
        self._cursor = (start + size) % len(records)
        return batch
