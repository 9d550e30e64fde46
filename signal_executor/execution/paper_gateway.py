"""
In-memory venue for dry runs and tests.

Market orders fill immediately, but each fill stays invisible to
`get_positions` for `visibility_delay` seconds of clock time. That models the
indexer replication lag real perp venues show between an order being
accepted and the position reflecting it.

Market orders reuse no client id: a resend under an id the venue already
filled is refused, as dYdX does. Orders below a market's lot size are refused.

Faults are injected per method with `fail_next(method, exc)`; with
`after_effect=True` the call takes effect before raising, like a timeout on
a request the venue already accepted.
"""
import itertools
from collections import defaultdict, deque
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Tuple

from signal_executor.constants import PAPER_EXCHANGE
from signal_executor.data.symbol_utils import normalize_market
from signal_executor.domain.models import (
    OrderReceipt,
    OrderRecord,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionRecord,
)
from signal_executor.domain.protocols import Clock
from signal_executor.exceptions import GatewayRejected
from signal_executor.monitoring.logger import get_logger
from signal_executor.runtime.clock import SystemClock

logger = get_logger(__name__)


class PaperGateway:
    """Simulated ExchangeGateway. Single event loop only."""

    def __init__(
        self,
        name: str = PAPER_EXCHANGE,
        *,
        equity: Decimal = Decimal("10000"),
        visibility_delay: float = 0.0,
        clock: Optional[Clock] = None,
        fill_ratio: Decimal = Decimal("1"),
        mark_prices: Optional[Dict[str, Decimal]] = None,
        account_ready: bool = True,
        lot_sizes: Optional[Dict[str, Decimal]] = None,
    ):
        """
        Args:
            name: Exchange key this gateway is registered under
            equity: Account equity reported by get_equity
            visibility_delay: Seconds before a fill shows up in get_positions
            clock: Time source for visibility_delay (share the engine's SimClock in tests)
            fill_ratio: Fraction of each market order that fills (1 = full fill)
            mark_prices: Fill price per market; used as position entry price
            account_ready: Value returned by is_account_ready
            lot_sizes: Minimum order size per market (0 when absent)
        """
        self.name = name
        self.equity = Decimal(equity)
        self.visibility_delay = visibility_delay
        self.clock = clock or SystemClock()
        self.fill_ratio = Decimal(fill_ratio)
        self.mark_prices = {normalize_market(k): Decimal(v) for k, v in (mark_prices or {}).items()}
        self.account_ready = account_ready
        self.lot_sizes = {normalize_market(k): Decimal(v) for k, v in (lot_sizes or {}).items()}

        self._positions: Dict[str, Decimal] = {}
        self._entry_prices: Dict[str, Optional[Decimal]] = {}
        # market -> [(visible_at, signed fill)]
        self._unindexed: Dict[str, List[Tuple[datetime, Decimal]]] = defaultdict(list)
        self._open_orders: Dict[str, OrderRecord] = {}
        self._faults: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._after_faults: Dict[str, Deque[Exception]] = defaultdict(deque)
        self._filled_client_ids: set = set()
        self._order_ids = itertools.count(1)

        self.connected = False
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.placed: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []

    # ---- test / dry-run setup ----

    def seed_position(self, market: str, size: Decimal, entry_price: Optional[Decimal] = None) -> None:
        """Set the position directly; visible immediately."""
        market = normalize_market(market)
        self._positions[market] = Decimal(size)
        self._entry_prices[market] = Decimal(entry_price) if entry_price is not None else None
        self._unindexed[market] = []

    def seed_order(
        self,
        market: str,
        side: OrderSide,
        size: Decimal,
        order_type: OrderType = OrderType.STOP,
        status: OrderStatus = OrderStatus.UNTRIGGERED,
        reduce_only: bool = True,
        client_id: Optional[str] = None,
    ) -> OrderRecord:
        """Add a resting order, e.g. a stop left over from an earlier signal."""
        order_id = f"paper-{next(self._order_ids)}"
        record = OrderRecord(
            order_id=order_id,
            client_id=client_id,
            market=normalize_market(market),
            side=side,
            order_type=order_type,
            size=Decimal(size),
            status=status,
            reduce_only=reduce_only,
        )
        self._open_orders[order_id] = record
        return record

    def fail_next(self, method: str, exc: Exception, times: int = 1, *, after_effect: bool = False) -> None:
        """Make the next `times` calls to `method` raise `exc`, after doing their work if `after_effect`."""
        queue = self._after_faults if after_effect else self._faults
        for _ in range(times):
            queue[method].append(exc)

    def actual_position(self, market: str) -> Decimal:
        """Position including fills the indexer has not shown yet."""
        return self._positions.get(normalize_market(market), Decimal("0"))

    def open_orders(self, market: str) -> List[OrderRecord]:
        market = normalize_market(market)
        return [o for o in self._open_orders.values() if o.market == market]

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    # ---- ExchangeGateway ----

    async def connect(self) -> None:
        self._record("connect")
        self.connected = True

    async def close(self) -> None:
        self._record("close")
        self.connected = False

    async def is_account_ready(self) -> bool:
        self._record("is_account_ready")
        return self.account_ready

    async def get_equity(self) -> Decimal:
        self._record("get_equity")
        return self.equity

    async def min_order_size(self, market: str) -> Decimal:
        return self.lot_sizes.get(normalize_market(market), Decimal("0"))

    async def get_positions(self, market: str) -> List[PositionRecord]:
        market = normalize_market(market)
        self._record("get_positions", market=market)

        now = self.clock.now()
        pending = [(at, fill) for at, fill in self._unindexed[market] if at > now]
        self._unindexed[market] = pending
        size = self._positions.get(market, Decimal("0")) - sum((fill for _, fill in pending), Decimal("0"))
        if size == 0:
            return []
        return [
            PositionRecord(
                market=market,
                size=size,
                entry_price=self._entry_prices.get(market),
                created_at=now,
            )
        ]

    async def get_open_orders(self, market: str) -> List[OrderRecord]:
        self._record("get_open_orders", market=normalize_market(market))
        return self.open_orders(market)

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
    ) -> OrderReceipt:
        market = normalize_market(market)
        order = {
            "market": market,
            "side": side,
            "order_type": order_type,
            "price": price,
            "size": Decimal(size),
            "client_id": client_id,
            "time_in_force": time_in_force,
            "reduce_only": reduce_only,
            "trigger_price": trigger_price,
        }
        self._record("place_order", **order)
        self.placed.append(order)

        lot = self.lot_sizes.get(market, Decimal("0"))
        if Decimal(size) < lot:
            raise GatewayRejected(f"Order size {size} below lot size {lot} on {market}", "INVALID_AMOUNT")

        order_id = f"paper-{next(self._order_ids)}"
        if order_type == OrderType.MARKET:
            if client_id in self._filled_client_ids:
                raise GatewayRejected(f"Duplicate client id {client_id} on {market}", "DUPLICATE_CLIENT_ID")
            self._filled_client_ids.add(client_id)
            filled = (Decimal(size) * self.fill_ratio).quantize(Decimal("0.00000001"))
            self._apply_fill(market, side, filled)
            status = "filled"
        else:
            self._open_orders[order_id] = OrderRecord(
                order_id=order_id,
                client_id=client_id,
                market=market,
                side=side,
                order_type=order_type,
                size=Decimal(size),
                status=OrderStatus.UNTRIGGERED if order_type == OrderType.STOP else OrderStatus.OPEN,
                reduce_only=reduce_only,
                price=price,
                trigger_price=trigger_price,
            )
            status = "open"

        logger.debug("PAPER_ORDER", order_id=order_id, status=status, market=market, side=side.value, size=str(size))
        if self._after_faults["place_order"]:
            raise self._after_faults["place_order"].popleft()
        return OrderReceipt(
            order_id=order_id,
            client_id=client_id,
            market=market,
            side=side,
            size=Decimal(size),
            status=status,
        )

    async def cancel_order(self, market: str, client_id: Optional[str], order_id: Optional[str] = None) -> None:
        market = normalize_market(market)
        self._record("cancel_order", market=market, client_id=client_id, order_id=order_id)
        for oid, record in list(self._open_orders.items()):
            if oid == order_id or (client_id is not None and record.client_id == client_id):
                del self._open_orders[oid]
                self.cancelled.append(oid)
                return

    # ---- internals ----

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, kwargs))
        if self._faults[method]:
            raise self._faults[method].popleft()

    def _apply_fill(self, market: str, side: OrderSide, filled: Decimal) -> None:
        signed = filled if side == OrderSide.BUY else -filled
        before = self._positions.get(market, Decimal("0"))
        after = before + signed
        fill_price = self.mark_prices.get(market)

        if after == 0:
            self._entry_prices[market] = None
        elif before == 0 or (before > 0) != (after > 0):
            self._entry_prices[market] = fill_price
        elif abs(after) > abs(before) and fill_price is not None and self._entry_prices.get(market) is not None:
            old = self._entry_prices[market]
            self._entry_prices[market] = (old * abs(before) + fill_price * filled) / abs(after)

        self._positions[market] = after
        if self.visibility_delay > 0 and signed != 0:
            visible_at = self.clock.now() + timedelta(seconds=self.visibility_delay)
            self._unindexed[market].append((visible_at, signed))
