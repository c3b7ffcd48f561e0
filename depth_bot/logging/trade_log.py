"""Order and fill event logger."""

from __future__ import annotations

import logging


def get_trade_logger(level: int | str = logging.INFO) -> logging.Logger:
    """Return configured trade logger instance."""
    logger = logging.getLogger("trade_log")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | TRADE | %(levelname)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
