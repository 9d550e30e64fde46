"""
Unit tests for CcxtGateway against mocked and market-seeded ccxt exchanges.
"""
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt_async
import pytest
import pytest_asyncio
from ccxt.base.errors import AuthenticationError, InsufficientFunds, RequestTimeout

from signal_executor.constants import AGGRESSIVE_SELL_PRICE_FLOOR
from signal_executor.domain.models import OrderSide, OrderStatus, OrderType
from signal_executor.exceptions import ConfigurationError, GatewayRejected, GatewayTransient
from signal_executor.execution.ccxt_gateway import CcxtGateway


@pytest.fixture
def exchange():
    ex = MagicMock()
    ex.markets = {
        "BTC/USD:USDC": {"id": "BTC-USD", "symbol": "BTC/USD:USDC"},
        "ETH/USD:USD": {"id": "PF_ETHUSD", "symbol": "ETH/USD:USD"},
    }
    ex.load_markets = AsyncMock(return_value=ex.markets)
    ex.amount_to_precision = MagicMock(side_effect=lambda symbol, amount: f"{amount:.4f}")
    ex.price_to_precision = MagicMock(side_effect=lambda symbol, price: f"{price:.1f}")
    ex.create_order = AsyncMock(return_value={"id": "ord-1", "clientOrderId": "123", "status": "open"})
    ex.cancel_order = AsyncMock(return_value={})
    ex.fetch_positions = AsyncMock(return_value=[])
    ex.fetch_open_orders = AsyncMock(return_value=[])
    ex.fetch_balance = AsyncMock(return_value={"total": {"USDC": 1234.5}})
    ex.close = AsyncMock()
    return ex


@pytest.fixture
def gateway(exchange):
    return CcxtGateway("dydxv4", "dydx", settle_currency="USDC", exchange=exchange)


@pytest.mark.asyncio
async def test_connect_loads_markets(gateway, exchange):
    await gateway.connect()
    exchange.load_markets.assert_awaited_once()


@pytest.mark.asyncio
async def test_unknown_ccxt_id_is_configuration_error():
    gateway = CcxtGateway("nowhere", "no_such_exchange_id")
    with pytest.raises(ConfigurationError):
        await gateway.connect()


@pytest.mark.asyncio
async def test_positions_are_signed_and_filtered(gateway, exchange):
    exchange.fetch_positions.return_value = [
        {"symbol": "BTC/USD:USDC", "contracts": 0.5, "side": "short", "entryPrice": 60000, "timestamp": 1735689600000},
        {"symbol": "ETH/USD:USD", "contracts": 3, "side": "long"},
        {"symbol": "BTC/USD:USDC", "contracts": None, "side": "long"},
    ]

    records = await gateway.get_positions("BTC_USD")

    assert len(records) == 1
    assert records[0].market == "BTC-USD"
    assert records[0].size == Decimal("-0.5")
    assert records[0].entry_price == Decimal("60000")
    assert records[0].created_at is not None
    exchange.fetch_positions.assert_awaited_once_with(["BTC/USD:USDC"])


@pytest.mark.asyncio
async def test_symbol_resolved_from_candidates_when_id_differs(gateway, exchange):
    await gateway.get_positions("ETH-USD")
    exchange.fetch_positions.assert_awaited_once_with(["ETH/USD:USD"])


@pytest.mark.asyncio
async def test_unlisted_market_is_rejected(gateway):
    with pytest.raises(GatewayRejected) as exc:
        await gateway.get_positions("DOGE-USD")
    assert exc.value.venue_code == "UNKNOWN_MARKET"


@pytest.mark.asyncio
async def test_open_orders_normalized(gateway, exchange):
    exchange.fetch_open_orders.return_value = [
        {"id": "o1", "clientOrderId": "9", "side": "sell", "type": "stop_market", "status": "open",
         "amount": 1, "remaining": 1, "triggerPrice": 49000, "reduceOnly": True},
        {"id": "o2", "side": "buy", "type": "limit", "status": "open", "amount": 2, "remaining": 2, "price": 45000},
    ]

    orders = await gateway.get_open_orders("BTC-USD")

    assert orders[0].order_type == OrderType.STOP
    assert orders[0].status == OrderStatus.UNTRIGGERED
    assert orders[0].reduce_only is True
    assert orders[0].trigger_price == Decimal("49000")
    assert orders[1].order_type == OrderType.LIMIT
    assert orders[1].status == OrderStatus.OPEN
    assert orders[1].client_id is None
    assert all(o.status.is_resting for o in orders)


@pytest.mark.asyncio
async def test_market_order_params(gateway, exchange):
    receipt = await gateway.place_order(
        "BTC-USD", OrderSide.BUY, OrderType.MARKET, Decimal("1000000"), Decimal("0.25"), "123", "IOC"
    )

    args = exchange.create_order.await_args.args
    assert args[:5] == ("BTC/USD:USDC", "market", "buy", 0.25, 1000000.0)
    assert args[5] == {"clientOrderId": "123", "timeInForce": "IOC"}
    assert receipt.order_id == "ord-1"
    assert receipt.client_id == "123"
    assert receipt.size == Decimal("0.25")


@pytest.mark.asyncio
async def test_stop_order_params(gateway, exchange):
    await gateway.place_order(
        "BTC-USD", OrderSide.SELL, OrderType.STOP, Decimal("1"), Decimal("1"), "77", "GTT",
        reduce_only=True, trigger_price=Decimal("49000"),
    )

    args = exchange.create_order.await_args.args
    params = args[5]
    assert args[1] == "market"
    assert params["reduceOnly"] is True
    assert params["triggerPrice"] == 49000.0
    assert isinstance(params["goodTillDate"], int)


@pytest.mark.asyncio
async def test_venue_rejection_translated(gateway, exchange):
    exchange.create_order.side_effect = InsufficientFunds('dydx {"code":"MARGIN","message":"insufficient margin"}')

    with pytest.raises(GatewayRejected) as exc:
        await gateway.place_order("BTC-USD", OrderSide.BUY, OrderType.MARKET, None, Decimal("1"), "1", "IOC")

    assert exc.value.venue_code == "MARGIN"
    assert "insufficient margin" in str(exc.value)


@pytest.mark.asyncio
async def test_network_error_translated_and_not_retried_on_place(gateway, exchange):
    exchange.create_order.side_effect = RequestTimeout("timed out")

    with pytest.raises(GatewayTransient):
        await gateway.place_order("BTC-USD", OrderSide.BUY, OrderType.MARKET, None, Decimal("1"), "1", "IOC")
    assert exchange.create_order.await_count == 1


@pytest.mark.asyncio
async def test_cancel_by_order_id_then_client_id(gateway, exchange):
    await gateway.cancel_order("BTC-USD", "9", "o1")
    exchange.cancel_order.assert_awaited_with("o1", "BTC/USD:USDC")

    await gateway.cancel_order("BTC-USD", "9")
    exchange.cancel_order.assert_awaited_with("9", "BTC/USD:USDC", {"clientOrderId": "9"})


@pytest.mark.asyncio
async def test_equity_in_settle_currency(gateway):
    assert await gateway.get_equity() == Decimal("1234.5")


@pytest.mark.asyncio
async def test_account_not_ready_on_auth_error(gateway, exchange):
    assert await gateway.is_account_ready() is True

    exchange.fetch_balance.side_effect = AuthenticationError("invalid key")
    assert await gateway.is_account_ready() is False


def _eth_market():
    return {
        "id": "ETH-USD",
        "symbol": "ETH/USD:USDC",
        "base": "ETH",
        "quote": "USD",
        "settle": "USDC",
        "baseId": "ETH",
        "quoteId": "USD",
        "settleId": "USDC",
        "type": "swap",
        "spot": False,
        "margin": False,
        "swap": True,
        "future": False,
        "option": False,
        "contract": True,
        "linear": True,
        "inverse": False,
        "contractSize": 1,
        "active": True,
        "precision": {"amount": 0.01, "price": 0.1},
        "limits": {
            "amount": {"min": 0.01, "max": None},
            "price": {"min": None, "max": None},
            "cost": {"min": None, "max": None},
            "leverage": {"min": None, "max": None},
        },
    }


@pytest_asyncio.fixture
async def dydx_exchange():
    exchange = ccxt_async.dydx()
    exchange.set_markets([_eth_market()])
    exchange.create_order = AsyncMock(return_value={"id": "ord-9", "status": "open"})
    yield exchange
    await exchange.close()


@pytest.mark.asyncio
async def test_min_order_size_from_market_precision(dydx_exchange):
    gateway = CcxtGateway("dydxv4", "dydx", settle_currency="USDC", exchange=dydx_exchange)

    assert await gateway.min_order_size("ETH_USD") == Decimal("0.01")


@pytest.mark.asyncio
async def test_sub_step_amount_is_rejected_not_raised_raw(dydx_exchange):
    gateway = CcxtGateway("dydxv4", "dydx", settle_currency="USDC", exchange=dydx_exchange)

    with pytest.raises(GatewayRejected) as exc:
        await gateway.place_order(
            "ETH-USD", OrderSide.BUY, OrderType.MARKET, Decimal("1000000"), Decimal("0.0033"), "1", "IOC"
        )

    assert exc.value.venue_code == "InvalidOrder"
    dydx_exchange.create_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_sell_floor_raised_to_price_tick(dydx_exchange):
    gateway = CcxtGateway("dydxv4", "dydx", settle_currency="USDC", exchange=dydx_exchange)

    await gateway.place_order(
        "ETH-USD", OrderSide.SELL, OrderType.MARKET, AGGRESSIVE_SELL_PRICE_FLOOR, Decimal("0.05"), "2", "IOC"
    )

    args = dydx_exchange.create_order.await_args.args
    assert args[:5] == ("ETH/USD:USDC", "market", "sell", 0.05, 0.1)
