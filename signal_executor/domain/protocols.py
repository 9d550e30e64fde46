"""
Domain protocols (interfaces) for dependency inversion.

These protocols define the contracts that infrastructure layers must implement,
allowing the reconciliation core to depend on abstractions rather than a
concrete exchange SDK, storage backend, or wall clock.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, runtime_checkable

from signal_executor.domain.models import (
    OrderReceipt,
    OrderRecord,
    OrderSide,
    OrderType,
    PositionRecord,
)


@runtime_checkable
class ExchangeGateway(Protocol):
    """
    Capability interface to a remote perpetual-futures venue.

    Every call is a suspension point and may raise GatewayTransient
    (network/timeout/rate limit) or GatewayRejected (venue refusal).
    Timeouts are enforced by the implementation, not by callers.
    """

    name: str

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def is_account_ready(self) -> bool: ...

    async def get_equity(self) -> Decimal: ...

    async def min_order_size(self, market: str) -> Decimal: ...

    async def get_positions(self, market: str) -> List[PositionRecord]: ...

    async def get_open_orders(self, market: str) -> List[OrderRecord]: ...

    async def place_order(
        self,
        market: str,
        side: OrderSide,
        order_type: OrderType,
        price: Optional[Decimal],
        size: Decimal,
        client_id: str,
        time_in_force: str,
        *,
        reduce_only: bool = False,
        trigger_price: Optional[Decimal] = None,
    ) -> OrderReceipt: ...

    async def cancel_order(self, market: str, client_id: Optional[str], order_id: Optional[str] = None) -> None: ...


@runtime_checkable
class IdempotencyStore(Protocol):
    """
    Persisted key -> seen mapping for inbound alert dedup.

    Implemented by JsonFileAlertStore in production; MemoryAlertStore in tests.
    """

    def load(self) -> Dict[str, bool]: ...

    def save(self, mapping: Dict[str, bool]) -> None: ...


@runtime_checkable
class Clock(Protocol):
    """Time source for settle delays; SimClock in tests."""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...
