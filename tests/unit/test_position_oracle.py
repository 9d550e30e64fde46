"""
Unit tests for PositionOracle record selection.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_executor.domain.models import DesiredPosition, PositionRecord
from signal_executor.execution.position_oracle import PositionOracle, select_current_record

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _gateway(records):
    gateway = MagicMock()
    gateway.get_positions = AsyncMock(return_value=records)
    return gateway


@pytest.mark.asyncio
@pytest.mark.parametrize("records", [None, []])
async def test_no_records_is_flat(records):
    snapshot = await PositionOracle(_gateway(records)).get_current_position("BTC_USD")

    assert snapshot.market == "BTC-USD"
    assert snapshot.signed_size == Decimal("0")
    assert snapshot.direction == DesiredPosition.FLAT


@pytest.mark.asyncio
async def test_short_position_is_negative():
    gateway = _gateway([PositionRecord(market="BTC-USD", size=Decimal("-0.5"), entry_price=Decimal("60000"))])

    snapshot = await PositionOracle(gateway).get_current_position("BTC-USD")

    assert snapshot.signed_size == Decimal("-0.5")
    assert snapshot.entry_price == Decimal("60000")
    assert snapshot.direction == DesiredPosition.SHORT
    gateway.get_positions.assert_awaited_once_with("BTC-USD")


def test_zero_size_records_ignored():
    records = [
        PositionRecord(market="BTC-USD", size=Decimal("0"), created_at=T0 + timedelta(hours=1), status="closed"),
        PositionRecord(market="BTC-USD", size=Decimal("2"), created_at=T0),
    ]
    assert select_current_record(records, "BTC-USD").size == Decimal("2")


def test_most_recent_record_wins():
    records = [
        PositionRecord(market="BTC-USD", size=Decimal("3"), created_at=T0 + timedelta(minutes=5)),
        PositionRecord(market="BTC-USD", size=Decimal("1"), created_at=T0),
    ]
    assert select_current_record(records, "BTC-USD").size == Decimal("3")


def test_list_order_breaks_missing_timestamps():
    records = [
        PositionRecord(market="BTC-USD", size=Decimal("1")),
        PositionRecord(market="BTC-USD", size=Decimal("-1")),
    ]
    assert select_current_record(records, "BTC-USD").size == Decimal("-1")


def test_other_markets_filtered_out():
    records = [
        PositionRecord(market="ETH-USD", size=Decimal("4")),
        PositionRecord(market="BTC/USD:USDC", size=Decimal("1")),
    ]
    assert select_current_record(records, "BTC-USD").size == Decimal("1")
    assert select_current_record(records, "SOL-USD") is None
