"""
Unit tests for PositionDelta classification and the tolerance helper.
"""
from decimal import Decimal

import pytest

from signal_executor.constants import SIZE_TOLERANCE
from signal_executor.domain.models import OrderSide
from signal_executor.reconciliation.position_delta import DeltaAction, PositionDelta, within_tolerance


@pytest.mark.parametrize("target, current, side, size, action", [
    ("1", "0", OrderSide.BUY, "1", DeltaAction.OPEN),
    ("-1", "1", OrderSide.SELL, "2", DeltaAction.FLIP),
    ("0", "-0.5", OrderSide.BUY, "0.5", DeltaAction.CLOSE),
    ("2", "1", OrderSide.BUY, "1", DeltaAction.ADJUST),
    ("-1", "-3", OrderSide.BUY, "2", DeltaAction.REDUCE),
    ("1", "1", None, "0", DeltaAction.HOLD),
])
def test_delta_side_size_action(target, current, side, size, action):
    delta = PositionDelta("BTC-USD", Decimal(target), Decimal(current))

    assert delta.side == side
    assert delta.order_size == Decimal(size)
    assert delta.action == action


def test_tolerance_boundary():
    assert SIZE_TOLERANCE == Decimal("0.001")
    assert within_tolerance(Decimal("1"), Decimal("1.0009"))
    assert not within_tolerance(Decimal("1"), Decimal("1.001"))
    assert PositionDelta("BTC-USD", Decimal("1"), Decimal("0.9995")).is_reconciled


def test_to_dict_is_loggable():
    d = PositionDelta("BTC-USD", Decimal("-1"), Decimal("1")).to_dict()

    assert d["delta"] == "-2"
    assert d["action"] == "flip"
    assert d["is_reconciled"] is False
