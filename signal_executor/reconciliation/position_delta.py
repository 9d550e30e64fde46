"""
Position Delta layer.

    TARGET_SIZE (what the alert wants, signed)
         ↓
    CURRENT_SIZE (what's on the exchange, signed)
         ↓
    DELTA = target - current (what needs to change)
         ↓
    one net order of |delta|, BUY iff delta > 0

Every comparison between a current and a target size goes through
`within_tolerance`; SIZE_TOLERANCE absorbs floating-point noise from the venue.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from signal_executor.constants import SIZE_TOLERANCE
from signal_executor.domain.models import OrderSide


class DeltaAction(str, Enum):
    """What a delta does to the position. Informational; the order is always the net delta."""
    HOLD = "hold"          # Target matches current
    OPEN = "open"          # Flat -> position
    CLOSE = "close"        # Position -> flat
    ADJUST = "adjust"      # Same side, larger
    REDUCE = "reduce"      # Same side, smaller
    FLIP = "flip"          # Reverse direction


def within_tolerance(target: Decimal, current: Decimal, tolerance: Decimal = SIZE_TOLERANCE) -> bool:
    """True when |target - current| < tolerance."""
    return abs(Decimal(target) - Decimal(current)) < tolerance


def _sign(value: Decimal, tolerance: Decimal) -> int:
    if abs(value) < tolerance:
        return 0
    return 1 if value > 0 else -1


@dataclass(frozen=True)
class PositionDelta:
    """The delta between target and current signed size in one market."""
    market: str
    target_size: Decimal
    current_size: Decimal
    tolerance: Decimal = SIZE_TOLERANCE

    @property
    def delta(self) -> Decimal:
        return self.target_size - self.current_size

    @property
    def is_reconciled(self) -> bool:
        return within_tolerance(self.target_size, self.current_size, self.tolerance)

    @property
    def side(self) -> Optional[OrderSide]:
        """Order side that moves current toward target; None when reconciled."""
        if self.is_reconciled:
            return None
        return OrderSide.BUY if self.delta > 0 else OrderSide.SELL

    @property
    def order_size(self) -> Decimal:
        return abs(self.delta)

    @property
    def action(self) -> DeltaAction:
        if self.is_reconciled:
            return DeltaAction.HOLD
        target_sign = _sign(self.target_size, self.tolerance)
        current_sign = _sign(self.current_size, self.tolerance)
        if current_sign == 0:
            return DeltaAction.OPEN
        if target_sign == 0:
            return DeltaAction.CLOSE
        if target_sign != current_sign:
            return DeltaAction.FLIP
        if abs(self.target_size) > abs(self.current_size):
            return DeltaAction.ADJUST
        return DeltaAction.REDUCE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "market": self.market,
            "target_size": str(self.target_size),
            "current_size": str(self.current_size),
            "delta": str(self.delta),
            "action": self.action.value,
            "is_reconciled": self.is_reconciled,
        }
