"""
Domain models for the signal executor.

These are the core business objects used throughout the application.
Sizes and prices are Decimals; timestamps are UTC timezone-aware datetimes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from signal_executor.data.symbol_utils import normalize_market
from signal_executor.exceptions import InvalidAlert


class DesiredPosition(str, Enum):
    """Target directional state declared by an alert."""
    LONG = "LONG"
    SHORT = "SHORT"
    FLAT = "FLAT"

    @classmethod
    def parse(cls, token: Any) -> "DesiredPosition":
        """Parse a direction token, case-insensitive. BUY/SELL are accepted as LONG/SHORT."""
        if token is None or not str(token).strip():
            raise InvalidAlert("desired_position is missing", field="desired_position")
        normalized = str(token).strip().upper()
        aliases = {"BUY": cls.LONG, "SELL": cls.SHORT}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidAlert(
                f"desired_position must be one of LONG | SHORT | FLAT, got {token!r}",
                field="desired_position",
            )

    @property
    def sign(self) -> int:
        return {DesiredPosition.LONG: 1, DesiredPosition.SHORT: -1, DesiredPosition.FLAT: 0}[self]


class OrderSide(str, Enum):
    """Order side."""
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type."""
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


class OrderStatus(str, Enum):
    """Order status as normalized from the venue."""
    OPEN = "open"
    UNTRIGGERED = "untriggered"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_resting(self) -> bool:
        """Resting orders can still fill and must be cleared before measuring."""
        return self in (OrderStatus.OPEN, OrderStatus.UNTRIGGERED)


@dataclass(frozen=True)
class Alert:
    """
    Inbound strategy alert, already JSON-decoded and validated.

    `market` keeps the wire form (BTC_USD); use `exchange_market` against the venue.
    """
    strategy: str
    market: str
    desired_position: DesiredPosition
    price: Optional[Decimal]
    time: str
    exchange: str
    size: Optional[Decimal] = None
    size_usd: Optional[Decimal] = None
    size_by_leverage: Optional[Decimal] = None

    @property
    def exchange_market(self) -> str:
        return normalize_market(self.market)

    @property
    def signal_id(self) -> str:
        """Execution-level identity: strategy|market|time."""
        return f"{self.strategy}|{self.market}|{self.time}"

    @property
    def store_key(self) -> str:
        """Inbound dedup key persisted in the alert store: strategy_market_time."""
        return f"{self.strategy}_{self.market}_{self.time}"


@dataclass(frozen=True)
class PositionRecord:
    """A raw perpetual position entry as reported by the gateway (size is signed)."""
    market: str
    size: Decimal
    entry_price: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    status: str = "open"


@dataclass(frozen=True)
class OrderRecord:
    """An order as reported by the gateway."""
    order_id: str
    client_id: Optional[str]
    market: str
    side: OrderSide
    order_type: OrderType
    size: Decimal
    status: OrderStatus
    reduce_only: bool = False
    price: Optional[Decimal] = None
    trigger_price: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderReceipt:
    """Acknowledgement returned by the gateway for a submitted order."""
    order_id: str
    client_id: str
    market: str
    side: OrderSide
    size: Decimal
    status: str = "submitted"
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class PositionSnapshot:
    """
    Canonical view of the account's position in one market.

    Derived fresh from the gateway on every measurement; never cached.
    """
    market: str
    signed_size: Decimal
    entry_price: Optional[Decimal] = None
    measured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)

    @classmethod
    def flat(cls, market: str) -> "PositionSnapshot":
        return cls(market=market, signed_size=Decimal("0"))

    @property
    def direction(self) -> DesiredPosition:
        if self.signed_size > 0:
            return DesiredPosition.LONG
        if self.signed_size < 0:
            return DesiredPosition.SHORT
        return DesiredPosition.FLAT


@dataclass(frozen=True)
class CorrectiveOrder:
    """An order the reconciliation engine decided to issue."""
    market: str
    side: OrderSide
    size: Decimal
    reduce_only: bool
    client_id: str
    order_type: OrderType = OrderType.MARKET
    price: Optional[Decimal] = None
    trigger_price: Optional[Decimal] = None
    time_in_force: str = "IOC"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "market": self.market,
            "side": self.side.value,
            "size": str(self.size),
            "reduce_only": self.reduce_only,
            "client_id": self.client_id,
            "order_type": self.order_type.value,
            "price": str(self.price) if self.price is not None else None,
            "trigger_price": str(self.trigger_price) if self.trigger_price is not None else None,
            "time_in_force": self.time_in_force,
        }
