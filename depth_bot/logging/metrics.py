"""Metrics summary helpers."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from depth_bot.accounting.pnl_tracker import FillStats


def summarize_metrics(stats: FillStats, active_orders: int = 0, now: float | None = None) -> dict[str, Any]:
    """Build a minimal metrics snapshot for periodic reporting."""
    base: dict[str, Any] = {
        "runtime_hours": stats.runtime_hours(now),
        "projected_daily_volume": stats.volume_rate_per_day(now),
        "at_quote_ratio": stats.at_quote_ratio,
        "active_orders": active_orders,
    }
    base.update({k: v for k, v in asdict(stats).items() if k != "started_at"})
    return base
