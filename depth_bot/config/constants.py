"""Project-wide constants for the depth maintenance bot."""

from __future__ import annotations

DEFAULT_PAIR = "BTC/USDT"
DEFAULT_BASE_ASSET = "BTC"
DEFAULT_QUOTE_ASSET = "USDT"

BUY = "BUY"
SELL = "SELL"
LIMIT = "LIMIT"

STATUS_NEW = "NEW"
STATUS_PARTIALLY_FILLED = "PARTIALLY_FILLED"
STATUS_FILLED = "FILLED"
STATUS_CANCELED = "CANCELED"
OPEN_STATUSES = frozenset({STATUS_NEW, STATUS_PARTIALLY_FILLED})
TERMINAL_STATUSES = frozenset({STATUS_FILLED, STATUS_CANCELED})

# Guard rejection reasons
REASON_INSUFFICIENT_FREE = "insufficient_free"
REASON_INSUFFICIENT_AFTER_RESERVATIONS = "insufficient_after_reservations"
REASON_BELOW_MIN_ORDER_SIZE = "below_min_order_size"

# Fill classification
FILL_AT_QUOTE = "at_quote"
FILL_OFF_QUOTE = "off_quote"

# Precision controls
PRICE_DECIMALS = 8
AMOUNT_DECIMALS = 6

DEFAULT_SETTINGS_FILE = "settings.yaml"
ENV_PREFIX = "DEPTH_BOT"
