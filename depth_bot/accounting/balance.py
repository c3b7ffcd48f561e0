"""Balance snapshots fetched fresh every cycle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class BalanceSnapshot:
    """Free and locked amounts of one asset."""

    asset: str
    free: float
    locked: float

    @property
    def total(self) -> float:
        return self.free + self.locked


def find_balance(balances: Iterable[BalanceSnapshot], asset: str) -> BalanceSnapshot:
    """Return the snapshot for ``asset``, or an empty one when the exchange omits it."""
    for balance in balances:
        if balance.asset.upper() == asset.upper():
            return balance
    return BalanceSnapshot(asset=asset, free=0.0, locked=0.0)


def equity(quote: BalanceSnapshot, base: BalanceSnapshot, mark_price: float) -> float:
    """Total equity in quote currency marked to ``mark_price``."""
    return quote.total + (base.total * mark_price)
