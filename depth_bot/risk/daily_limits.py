"""Daily loss cap that halts new order placement."""

from __future__ import annotations

from typing import Optional


class DailyLimits:
    """Enforces a hard stop once realized losses reach the configured limit."""

    def __init__(self, daily_loss_limit: Optional[float]) -> None:
        self.daily_loss_limit = daily_loss_limit

    def can_continue(self, realized_pnl: float) -> tuple[bool, str]:
        """Return (allowed, reason) based on realized pnl since start."""
        if self.daily_loss_limit is None:
            return True, "ok"
        if realized_pnl <= -abs(self.daily_loss_limit):
            return False, "daily_loss_limit_hit"
        return True, "ok"
