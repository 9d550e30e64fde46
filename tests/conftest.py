"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from signal_executor.domain.models import Alert, DesiredPosition
from signal_executor.execution.paper_gateway import PaperGateway
from signal_executor.reconciliation.engine import ReconciliationEngine, ReconciliationSettings
from signal_executor.runtime.clock import SimClock
from signal_executor.runtime.market_locks import MarketLockTable
from signal_executor.runtime.signal_registry import SignalRegistry


@pytest.fixture
def sim_clock():
    return SimClock(start=datetime(2025, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def paper():
    return PaperGateway(name="dydxv4")


@pytest.fixture
def make_alert():
    """Alert factory with sensible defaults; override any field by keyword."""
    def _make(**overrides) -> Alert:
        fields = dict(
            strategy="trend",
            market="BTC_USD",
            desired_position=DesiredPosition.LONG,
            price=Decimal("50000"),
            time="1700000000",
            exchange="dydxv4",
            size=Decimal("1"),
        )
        fields.update(overrides)
        return Alert(**fields)

    return _make


@pytest.fixture
def make_engine(sim_clock):
    """Engine factory over a given gateway; SimClock so settle delays cost nothing."""
    def _make(gateway, **settings) -> ReconciliationEngine:
        return ReconciliationEngine(
            gateway,
            locks=MarketLockTable(),
            signals=SignalRegistry(),
            clock=sim_clock,
            settings=ReconciliationSettings(**settings),
        )

    return _make
