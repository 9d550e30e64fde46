"""
System-wide constants for the signal executor.

Centralizes magic numbers and default values used across modules.
"""
from decimal import Decimal

# Reconciliation
SIZE_TOLERANCE = Decimal("0.001")  # |target - current| below this is treated as converged
MAX_RECONCILE_ATTEMPTS = 5
SETTLE_DELAY_SECONDS = 1.5  # wait for the venue indexer to reflect a fill

# Market-order price bounds (venues that require a price even for market semantics)
AGGRESSIVE_BUY_PRICE_CAP = Decimal("1000000")
AGGRESSIVE_SELL_PRICE_FLOOR = Decimal("0.000001")

# Order lifetime
DEFAULT_GOOD_TIL_SECONDS = 120
MARKET_TIME_IN_FORCE = "IOC"
STOP_TIME_IN_FORCE = "GTT"

# Client ids (dYdX v4 client ids are uint32)
CLIENT_ID_HEX_DIGITS = 8
CLIENT_ID_MAX = 2**32 - 1

# Exchanges
DEFAULT_EXCHANGE = "dydxv4"
PAPER_EXCHANGE = "paper"

# Timeouts and Retries
DEFAULT_API_TIMEOUT_MS = 30000
MAX_RETRY_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 1.0

# Storage
DEFAULT_ALERT_STORE_PATH = "data/executed-alerts.json"
