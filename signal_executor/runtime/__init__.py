"""
Runtime state owned by the service instance (market locks, processed signals, clocks).
"""
from signal_executor.runtime.clock import SimClock, SystemClock
from signal_executor.runtime.market_locks import MarketLockTable
from signal_executor.runtime.signal_registry import SignalRegistry

__all__ = [
    "MarketLockTable",
    "SignalRegistry",
    "SimClock",
    "SystemClock",
]
