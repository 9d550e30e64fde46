"""
Position reconciliation: measure, compare to target, correct with net-delta orders.
"""
from signal_executor.reconciliation.engine import (
    ReconciliationEngine,
    ReconciliationResult,
    ReconciliationSettings,
    ReconciliationState,
)
from signal_executor.reconciliation.position_delta import DeltaAction, PositionDelta, within_tolerance

__all__ = [
    "DeltaAction",
    "PositionDelta",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconciliationSettings",
    "ReconciliationState",
    "within_tolerance",
]
