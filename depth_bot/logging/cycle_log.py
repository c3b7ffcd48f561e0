"""Cycle decision logger for the maintainer and scheduler."""

from __future__ import annotations

import logging


def get_cycle_logger(level: int | str = logging.INFO) -> logging.Logger:
    """Return configured cycle logger instance."""
    logger = logging.getLogger("cycle_log")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | CYCLE | %(levelname)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
