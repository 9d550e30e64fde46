"""
Per-market mutual exclusion for reconciliations.

Concurrent alerts for different markets proceed independently; alerts for
the same market queue until the running reconciliation releases the lock.
The table is owned by the service instance (constructed once at startup and
injected into the engine), never a module-level singleton.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from signal_executor.data.symbol_utils import normalize_market
from signal_executor.monitoring.logger import get_logger

logger = get_logger(__name__)


class MarketLockTable:
    """Mapping from market id to a lock handle, created lazily."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, market: str) -> asyncio.Lock:
        key = normalize_market(market)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_busy(self, market: str) -> bool:
        lock = self._locks.get(normalize_market(market))
        return bool(lock and lock.locked())

    async def acquire(self, market: str) -> None:
        """Wait until the market is free, then mark it busy. Never fails for contention."""
        lock = self._lock_for(market)
        if lock.locked():
            logger.info("MARKET_LOCK_WAIT", market=normalize_market(market))
        await lock.acquire()
        logger.debug("MARKET_LOCK_ACQUIRED", market=normalize_market(market))

    def release(self, market: str) -> None:
        lock = self._locks.get(normalize_market(market))
        if lock is None or not lock.locked():
            logger.warning("MARKET_LOCK_RELEASE_UNHELD", market=normalize_market(market))
            return
        lock.release()
        logger.debug("MARKET_LOCK_RELEASED", market=normalize_market(market))

    @asynccontextmanager
    async def hold(self, market: str) -> AsyncIterator[None]:
        """Hold the market lock for the body; released even when the body raises."""
        await self.acquire(market)
        try:
            yield
        finally:
            self.release(market)
