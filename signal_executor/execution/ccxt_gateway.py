"""
ExchangeGateway over ccxt's async clients.

Venue markets come in dash form (BTC-USD); ccxt wants unified symbols
(BTC/USD:USD). The unified symbol is resolved once per market from
`load_markets` and cached.

ccxt errors are translated at this boundary:
    NetworkError (timeouts, rate limits, DDoS protection) -> GatewayTransient
    ExchangeError (bad size, margin, auth, unknown order)  -> GatewayRejected
    any other ccxt BaseError                                -> GatewayTransient
"""
import json
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import ccxt.async_support as ccxt_async
from ccxt.base.decimal_to_precision import DECIMAL_PLACES, TICK_SIZE
from ccxt.base.errors import BaseError, ExchangeError, NetworkError

from signal_executor.constants import (
    DEFAULT_API_TIMEOUT_MS,
    DEFAULT_GOOD_TIL_SECONDS,
    MAX_RETRY_ATTEMPTS,
    RETRY_BACKOFF_SECONDS,
    STOP_TIME_IN_FORCE,
)
from signal_executor.data.symbol_utils import normalize_market, unified_symbol_candidates
from signal_executor.domain.models import (
    OrderReceipt,
    OrderRecord,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionRecord,
)
from signal_executor.exceptions import ConfigurationError, GatewayRejected, GatewayTransient
from signal_executor.monitoring.logger import get_logger
from signal_executor.utils.retry import retry_on_transient_errors

logger = get_logger(__name__)

_STOP_TYPES = frozenset({"stop", "stop_market", "stop-market", "stop_loss", "stop-loss", "stop_limit", "trigger"})


def _extract_venue_error(exc: Exception) -> tuple:
    """Venue error code and message from a ccxt exception. Returns (code, message)."""
    code, msg = type(exc).__name__, str(exc)
    s = str(exc)
    if "{" in s:
        start, end = s.find("{"), s.rfind("}") + 1
        try:
            data = json.loads(s[start:end])
        except ValueError:
            return code, msg
        if isinstance(data, dict):
            errs = data.get("errors") or data.get("error")
            if isinstance(errs, list) and errs and isinstance(errs[0], dict):
                return str(errs[0].get("code", code)), str(errs[0].get("message", msg))
            if data.get("code") is not None:
                return str(data["code"]), str(data.get("message", msg))
    return code, msg


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class CcxtGateway:
    """Perp venue access through a ccxt async exchange instance."""

    def __init__(
        self,
        name: str,
        ccxt_id: str,
        *,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        password: Optional[str] = None,
        wallet_address: Optional[str] = None,
        private_key: Optional[str] = None,
        testnet: bool = False,
        timeout_ms: int = DEFAULT_API_TIMEOUT_MS,
        settle_currency: Optional[str] = None,
        exchange: Any = None,
    ):
        """
        Args:
            name: Exchange key alerts use to select this gateway (e.g. "dydxv4")
            ccxt_id: ccxt exchange class name (e.g. "dydx", "krakenfutures")
            exchange: Pre-built ccxt exchange; tests pass a mock here
        """
        self.name = name
        self.ccxt_id = ccxt_id
        self.api_key = api_key
        self.api_secret = api_secret
        self.password = password
        self.wallet_address = wallet_address
        self.private_key = private_key
        self.testnet = testnet
        self.timeout_ms = timeout_ms
        self.settle_currency = settle_currency
        self.exchange = exchange
        self._symbols: Dict[str, str] = {}

    def has_credentials(self) -> bool:
        """True when some credential is set and is not an unexpanded ${VAR} placeholder."""
        values = [self.api_key, self.private_key, self.wallet_address]
        return any(v and not str(v).startswith("${") for v in values)

    async def connect(self) -> None:
        """
        Build the ccxt client and load markets.
        MUST be called inside the running event loop.
        """
        if self.exchange is None:
            exchange_cls = getattr(ccxt_async, self.ccxt_id, None)
            if exchange_cls is None:
                raise ConfigurationError(f"ccxt has no exchange '{self.ccxt_id}' (key {self.name})")

            options: Dict[str, Any] = {
                "enableRateLimit": True,
                "timeout": self.timeout_ms,
                "options": {"defaultType": "swap"},
            }
            for key, value in (
                ("apiKey", self.api_key),
                ("secret", self.api_secret),
                ("password", self.password),
                ("walletAddress", self.wallet_address),
                ("privateKey", self.private_key),
            ):
                if value:
                    options[key] = value
            if not self.has_credentials():
                logger.warning("GATEWAY_NO_CREDENTIALS", exchange=self.name, ccxt_id=self.ccxt_id)
            self.exchange = exchange_cls(options)
            if self.testnet:
                self.exchange.set_sandbox_mode(True)

        await self._call("load_markets", self.exchange.load_markets)
        logger.info("GATEWAY_CONNECTED", exchange=self.name, ccxt_id=self.ccxt_id, testnet=self.testnet)

    async def close(self) -> None:
        if self.exchange is not None:
            await self.exchange.close()
            logger.info("GATEWAY_CLOSED", exchange=self.name)

    async def is_account_ready(self) -> bool:
        """Account is ready when a balance can be fetched with the configured credentials."""
        if self.exchange is None:
            return False
        try:
            await self._call("fetch_balance", self.exchange.fetch_balance)
        except (GatewayTransient, GatewayRejected) as e:
            logger.warning("ACCOUNT_NOT_READY", exchange=self.name, error=str(e))
            return False
        return True

    @retry_on_transient_errors(max_retries=MAX_RETRY_ATTEMPTS, base_delay=RETRY_BACKOFF_SECONDS)
    async def get_equity(self) -> Decimal:
        balance = await self._call("fetch_balance", self.exchange.fetch_balance)
        totals = balance.get("total") or {}
        currency = (self.settle_currency or "USDC").upper()
        equity = _to_decimal(totals.get(currency))
        if equity is None:
            logger.warning("EQUITY_CURRENCY_MISSING", exchange=self.name, currency=currency, available=list(totals))
            return Decimal("0")
        return equity

    async def min_order_size(self, market: str) -> Decimal:
        """Larger of the amount step and the minimum amount from the loaded markets; 0 when unknown."""
        symbol = await self._unified_symbol(normalize_market(market))
        info = (self.exchange.markets or {}).get(symbol) or {}

        step = self._precision_step(info, "amount")
        minimum = _to_decimal(((info.get("limits") or {}).get("amount") or {}).get("min")) or Decimal("0")
        return max(step, minimum)

    @retry_on_transient_errors(max_retries=MAX_RETRY_ATTEMPTS, base_delay=RETRY_BACKOFF_SECONDS)
    async def get_positions(self, market: str) -> List[PositionRecord]:
        market = normalize_market(market)
        symbol = await self._unified_symbol(market)
        raw_positions = await self._call("fetch_positions", self.exchange.fetch_positions, [symbol])

        records: List[PositionRecord] = []
        for pos in raw_positions or []:
            if pos.get("symbol") != symbol:
                continue
            contracts = _to_decimal(pos.get("contracts"))
            if contracts is None:
                continue
            side = (pos.get("side") or "").lower()
            signed = -abs(contracts) if side == "short" else abs(contracts)
            timestamp = pos.get("timestamp")
            records.append(
                PositionRecord(
                    market=market,
                    size=signed,
                    entry_price=_to_decimal(pos.get("entryPrice")),
                    created_at=datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc) if timestamp else None,
                )
            )
        return records

    @retry_on_transient_errors(max_retries=MAX_RETRY_ATTEMPTS, base_delay=RETRY_BACKOFF_SECONDS)
    async def get_open_orders(self, market: str) -> List[OrderRecord]:
        market = normalize_market(market)
        symbol = await self._unified_symbol(market)
        raw_orders = await self._call("fetch_open_orders", self.exchange.fetch_open_orders, symbol)
        return [self._to_order_record(market, o) for o in raw_orders or []]

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
        """Submit one order. Not retried here; the reconciliation loop owns retries."""
        market = normalize_market(market)
        symbol = await self._unified_symbol(market)

        params: Dict[str, Any] = {"clientOrderId": client_id, "timeInForce": time_in_force}
        if reduce_only:
            params["reduceOnly"] = True
        if trigger_price is not None:
            try:
                params["triggerPrice"] = float(self.exchange.price_to_precision(symbol, float(trigger_price)))
            except BaseError as e:
                raise self._translate("to_precision", e) from e
        if time_in_force == STOP_TIME_IN_FORCE:
            params["goodTillDate"] = int((time.time() + DEFAULT_GOOD_TIL_SECONDS) * 1000)

        if price is not None:
            # Sell floors below the price tick would round to zero
            tick = self._precision_step((self.exchange.markets or {}).get(symbol) or {}, "price")
            price = max(Decimal(price), tick)
        try:
            amount = float(self.exchange.amount_to_precision(symbol, float(size)))
            limit_price = float(self.exchange.price_to_precision(symbol, float(price))) if price is not None else None
        except BaseError as e:
            raise self._translate("to_precision", e) from e
        # Stop-market is a market order with a trigger in ccxt's unified API
        ccxt_type = "limit" if order_type == OrderType.LIMIT else "market"

        logger.info(
            "PLACING_ORDER",
            exchange=self.name,
            symbol=symbol,
            side=side.value,
            type=order_type.value,
            amount=amount,
            price=limit_price,
            reduce_only=reduce_only,
            client_id=client_id,
        )
        order = await self._call(
            "create_order",
            self.exchange.create_order,
            symbol,
            ccxt_type,
            side.value,
            amount,
            limit_price,
            params,
        )
        return OrderReceipt(
            order_id=str(order.get("id")),
            client_id=str(order.get("clientOrderId") or client_id),
            market=market,
            side=side,
            size=Decimal(str(amount)),
            status=order.get("status") or "submitted",
            raw=order,
        )

    async def cancel_order(self, market: str, client_id: Optional[str], order_id: Optional[str] = None) -> None:
        market = normalize_market(market)
        symbol = await self._unified_symbol(market)
        if order_id:
            await self._call("cancel_order", self.exchange.cancel_order, order_id, symbol)
        elif client_id:
            await self._call(
                "cancel_order", self.exchange.cancel_order, client_id, symbol, {"clientOrderId": client_id}
            )
        else:
            raise GatewayRejected(f"Cannot cancel order on {market} without an order or client id", "NO_ORDER_ID")

    async def _unified_symbol(self, market: str) -> str:
        if market in self._symbols:
            return self._symbols[market]
        if not self.exchange.markets:
            await self._call("load_markets", self.exchange.load_markets)

        markets = self.exchange.markets or {}
        symbol = None
        for m in markets.values():
            if str(m.get("id", "")).upper() == market:
                symbol = m["symbol"]
                break
        if symbol is None:
            for candidate in unified_symbol_candidates(market, self.settle_currency):
                if candidate in markets:
                    symbol = candidate
                    break
        if symbol is None:
            raise GatewayRejected(f"Market {market} is not listed on {self.name}", "UNKNOWN_MARKET")

        self._symbols[market] = symbol
        return symbol

    def _precision_step(self, info: Dict[str, Any], field: str) -> Decimal:
        """Tick for `field` ("amount" or "price") of one market; 0 when unknown."""
        precision = (info.get("precision") or {}).get(field)
        if precision is None:
            return Decimal("0")
        mode = getattr(self.exchange, "precisionMode", None)
        if mode == TICK_SIZE:
            return Decimal(str(precision))
        if mode == DECIMAL_PLACES:
            return Decimal("1").scaleb(-int(precision))
        return Decimal("0")

    def _to_order_record(self, market: str, order: Dict[str, Any]) -> OrderRecord:
        raw_type = (order.get("type") or "").lower()
        trigger = _to_decimal(order.get("triggerPrice") or order.get("stopPrice"))
        if raw_type in _STOP_TYPES or trigger is not None:
            order_type = OrderType.STOP
        elif raw_type == "market":
            order_type = OrderType.MARKET
        else:
            order_type = OrderType.LIMIT

        raw_status = (order.get("status") or "open").lower()
        if raw_status == "open":
            status = OrderStatus.UNTRIGGERED if order_type == OrderType.STOP else OrderStatus.OPEN
        elif raw_status in ("closed", "filled"):
            status = OrderStatus.FILLED
        elif raw_status in ("canceled", "cancelled", "expired"):
            status = OrderStatus.CANCELLED
        else:
            status = OrderStatus.REJECTED

        return OrderRecord(
            order_id=str(order.get("id")),
            client_id=order.get("clientOrderId"),
            market=market,
            side=OrderSide((order.get("side") or "buy").lower()),
            order_type=order_type,
            size=_to_decimal(order.get("remaining")) or _to_decimal(order.get("amount")) or Decimal("0"),
            status=status,
            reduce_only=bool(order.get("reduceOnly")),
            price=_to_decimal(order.get("price")),
            trigger_price=trigger,
        )

    async def _call(self, operation: str, fn: Callable[..., Awaitable[Any]], *args) -> Any:
        try:
            return await fn(*args)
        except BaseError as e:
            raise self._translate(operation, e) from e

    def _translate(self, operation: str, e: BaseError) -> Exception:
        """Gateway exception for a ccxt error; the caller raises it."""
        if isinstance(e, NetworkError):
            logger.warning("GATEWAY_TRANSIENT", exchange=self.name, operation=operation, error=str(e))
            return GatewayTransient(f"{self.name} {operation}: {e}")
        if isinstance(e, ExchangeError):
            venue_code, venue_msg = _extract_venue_error(e)
            logger.error(
                "GATEWAY_REJECTED",
                exchange=self.name,
                operation=operation,
                venue_error_code=venue_code,
                venue_error_message=venue_msg,
            )
            return GatewayRejected(f"{self.name} {operation}: {venue_msg}", venue_code)
        logger.warning("GATEWAY_ERROR", exchange=self.name, operation=operation, error=str(e))
        return GatewayTransient(f"{self.name} {operation}: {e}")
