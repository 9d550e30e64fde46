"""
Unit tests for order client ids.
"""
import hashlib

from signal_executor.constants import CLIENT_ID_MAX
from signal_executor.domain.models import OrderSide
from signal_executor.execution.client_ids import deterministic_client_id, random_client_id


def test_deterministic_id_is_stable_and_matches_hash(make_alert):
    alert = make_alert(strategy="trend", market="BTC_USD", time="1700000000")
    digest = hashlib.sha256(b"trend|BTC_USD|1700000000|BUY").hexdigest()

    assert deterministic_client_id(alert, OrderSide.BUY) == str(int(digest[:8], 16))
    assert deterministic_client_id(alert, OrderSide.BUY) == deterministic_client_id(make_alert(), OrderSide.BUY)


def test_deterministic_id_depends_on_side_and_time(make_alert):
    alert = make_alert()

    assert deterministic_client_id(alert, OrderSide.BUY) != deterministic_client_id(alert, OrderSide.SELL)
    assert deterministic_client_id(alert, OrderSide.BUY) != deterministic_client_id(
        make_alert(time="1700000001"), OrderSide.BUY
    )


def test_random_ids_are_uint32_and_distinct():
    ids = {random_client_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(0 < int(i) <= CLIENT_ID_MAX for i in ids)
