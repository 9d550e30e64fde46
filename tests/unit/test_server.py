"""
HTTP-level tests for the webhook app.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from signal_executor.api.server import create_app
from signal_executor.execution.gateway_registry import GatewayRegistry
from signal_executor.execution.paper_gateway import PaperGateway
from signal_executor.services.alert_service import AlertService
from signal_executor.storage.alert_store import AlertDeduplicator, MemoryAlertStore

ALERT = {
    "exchange": "dydxv4",
    "strategy": "trend",
    "market": "BTC_USD",
    "desired_position": "LONG",
    "size": 1,
    "price": 50000,
    "time": 1700000000,
    "passphrase": "secret",
}


def _client(gateway, sim_clock):
    service = AlertService(
        GatewayRegistry({"dydxv4": lambda: gateway}),
        AlertDeduplicator(MemoryAlertStore()),
        passphrase="secret",
        clock=sim_clock,
    )
    return TestClient(create_app(service))


@pytest.fixture
def gateway(sim_clock):
    return PaperGateway(name="dydxv4", clock=sim_clock)


@pytest.fixture
def client(gateway, sim_clock):
    with _client(gateway, sim_clock) as c:
        yield c


def test_liveness(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == "OK"


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["exchanges"] == ["dydxv4"]
    assert "uptime_seconds" in body


def test_accounts(client):
    assert client.get("/accounts").json() == {"dydxv4": True}


def test_alert_executes_then_duplicate(client, gateway):
    first = client.post("/", json=ALERT)
    second = client.post("/", json=ALERT)

    assert (first.status_code, first.text) == (200, "OK")
    assert (second.status_code, second.text) == (200, "duplicate")
    assert gateway.actual_position("BTC-USD") == Decimal("1")


def test_invalid_alert(client, gateway):
    response = client.post("/", json={**ALERT, "desired_position": "HOLD"})

    assert response.status_code == 400
    assert response.text == "Error. alert message is not valid"
    assert gateway.placed == []


def test_non_json_body_is_invalid(client):
    response = client.post("/", content="LONG BTC", headers={"content-type": "text/plain"})

    assert response.status_code == 400
    assert response.text == "Error. alert message is not valid"


def test_unsupported_exchange(client):
    response = client.post("/", json={**ALERT, "exchange": "perpetual"})

    assert response.status_code == 400
    assert response.text == "Error. exchange is not supported"


def test_exhausted_reconciliation_is_server_error(sim_clock):
    gateway = PaperGateway(name="dydxv4", clock=sim_clock, fill_ratio=Decimal("0"))
    with _client(gateway, sim_clock) as client:
        response = client.post("/", json=ALERT)

    assert response.status_code == 500
    assert response.text == "error"
