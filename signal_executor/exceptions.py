"""
Custom exception hierarchy for the signal executor.

Provides clear, specific exceptions for the failure classes the alert
pipeline distinguishes.

Hierarchy:

    SignalExecutorError (base)
    ├── OperationalError       : transient/retryable
    │   └── GatewayTransient   : network, timeout, rate limit from the venue
    ├── DataError              : bad input, reject the alert
    │   ├── InvalidAlert
    │   │   └── UnsupportedExchange
    │   └── ConfigurationError
    ├── GatewayRejected        : venue explicitly refused an order
    └── ReconciliationExhausted: convergence not reached within the attempt budget

Rules:
    - GatewayTransient: contained inside the reconciliation loop, consumes an attempt
    - GatewayRejected: consumes an attempt; terminal if no progress was made
    - InvalidAlert: short-circuit before any exchange call
    - Everything else (AttributeError, TypeError, etc.): let it propagate.
"""


class SignalExecutorError(Exception):
    """Base exception for all signal executor errors."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(SignalExecutorError):
    """Transient/retryable error: exchange API, network, timeouts."""
    pass


class GatewayTransient(OperationalError):
    """Network/timeout/rate-limit failure talking to the exchange gateway.

    Treatment: retried within the bounded reconciliation loop.
    """
    pass


# ============ DATA (bad input, reject) ============

class DataError(SignalExecutorError):
    """Bad data: malformed alert, bad configuration."""
    pass


class InvalidAlert(DataError):
    """Alert is malformed, has an unknown direction, or fails authentication.

    Surfaced to the caller as a rejection and never retried.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class UnsupportedExchange(InvalidAlert):
    """Alert names an exchange key that is not in the gateway registry."""

    def __init__(self, exchange: str, available: list[str] | None = None):
        self.exchange = exchange
        self.available = list(available or [])
        super().__init__(
            f"Exchange {exchange} is not supported. Available: {', '.join(self.available) or 'none'}",
            field="exchange",
        )


class ConfigurationError(DataError):
    """Missing credentials or an invalid configuration value."""
    pass


# ============ EXECUTION ============

class GatewayRejected(SignalExecutorError):
    """Exchange explicitly rejected an order (insufficient margin, bad size, ...).

    Not retried within the same attempt; the loop re-measures on its normal cadence.
    """

    def __init__(self, message: str, venue_code: str = "UNKNOWN"):
        super().__init__(message)
        self.venue_code = venue_code


class ReconciliationExhausted(SignalExecutorError):
    """Position did not converge to the target within the attempt budget.

    The engine never raises this itself; it returns an EXHAUSTED result.
    Callers that want an exception use ReconciliationResult.raise_for_status().
    """

    def __init__(self, market: str, target, current, attempts: int):
        super().__init__(
            f"Reconciliation exhausted for {market}: target={target} current={current} "
            f"after {attempts} attempts"
        )
        self.market = market
        self.target = target
        self.current = current
        self.attempts = attempts
