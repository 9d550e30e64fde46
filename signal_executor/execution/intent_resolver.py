"""
Intent Resolver: alert -> target signed size.

The target depends only on the alert (and account equity for
sizeByLeverage), never on the current position.

Size basis precedence when an alert carries more than one:
    size  >  sizeUsd  >  sizeByLeverage
"""
from decimal import Decimal
from typing import Optional

from signal_executor.domain.models import Alert, DesiredPosition
from signal_executor.domain.protocols import ExchangeGateway
from signal_executor.exceptions import InvalidAlert
from signal_executor.monitoring.logger import get_logger

logger = get_logger(__name__)

SIZE_BASIS_PRECEDENCE = ("size", "size_usd", "size_by_leverage")


def chosen_size_basis(alert: Alert) -> Optional[str]:
    """Name of the size field that applies to this alert, or None if none is set."""
    present = [name for name in SIZE_BASIS_PRECEDENCE if getattr(alert, name) is not None]
    if len(present) > 1:
        logger.warning(
            "SIZE_BASIS_CONFLICT",
            signal_id=alert.signal_id,
            used=present[0],
            ignored=present[1:],
        )
    return present[0] if present else None


class IntentResolver:
    """Turns an alert into the signed size the account should hold."""

    def __init__(self, gateway: Optional[ExchangeGateway] = None):
        self.gateway = gateway

    async def resolve_target(self, alert: Alert) -> Decimal:
        """
        LONG -> +|size|, SHORT -> -|size|, FLAT -> 0.

        Raises:
            InvalidAlert: no usable size basis, or a price-based basis without a positive price
        """
        direction = alert.desired_position
        if direction == DesiredPosition.FLAT:
            return Decimal("0")

        magnitude = abs(await self._resolve_magnitude(alert))
        if magnitude == 0:
            raise InvalidAlert("Resolved position size is zero", field="size")
        target = magnitude * direction.sign
        logger.info(
            "TARGET_RESOLVED",
            signal_id=alert.signal_id,
            desired_position=direction.value,
            target_size=str(target),
        )
        return target

    async def _resolve_magnitude(self, alert: Alert) -> Decimal:
        basis = chosen_size_basis(alert)
        if basis is None:
            raise InvalidAlert("One of size, sizeUsd or sizeByLeverage is required", field="size")

        if basis == "size":
            return Decimal(alert.size)

        price = Decimal(alert.price) if alert.price is not None else Decimal("0")
        if price <= 0:
            raise InvalidAlert(f"A positive price is required for {basis}", field="price")

        if basis == "size_usd":
            return Decimal(alert.size_usd) / price

        if self.gateway is None:
            raise InvalidAlert("sizeByLeverage needs account equity but no gateway is attached", field="sizeByLeverage")
        equity = Decimal(await self.gateway.get_equity())
        logger.info(
            "LEVERAGE_SIZE_INPUTS",
            signal_id=alert.signal_id,
            equity=str(equity),
            leverage=str(alert.size_by_leverage),
            price=str(price),
        )
        return equity * Decimal(alert.size_by_leverage) / price
