"""
Reconciliation engine: drive the account's signed position toward a target.

State machine per call:

    IDLE → LOCKED → CANCEL_PENDING_ORDERS → MEASURE ─┬→ CONVERGED
                                               ↑     └→ CORRECTING ─┐
                                               └──── settle delay ←─┘
    (attempt budget spent) → EXHAUSTED | REJECTED

Each correction is ONE net order of |target - current|: a flip from LONG 1
to SHORT 1 is a single SELL 2, not a close followed by an open. Perp venues
settle through an indexer with replication lag; measuring between two
back-to-back orders would read stale state.

A remaining delta smaller than the venue's order step cannot be traded and
counts as converged.

The market lock is released on every path, including exceptions.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from signal_executor.constants import (
    AGGRESSIVE_BUY_PRICE_CAP,
    AGGRESSIVE_SELL_PRICE_FLOOR,
    MARKET_TIME_IN_FORCE,
    MAX_RECONCILE_ATTEMPTS,
    SETTLE_DELAY_SECONDS,
    SIZE_TOLERANCE,
    STOP_TIME_IN_FORCE,
)
from signal_executor.domain.models import (
    Alert,
    CorrectiveOrder,
    OrderReceipt,
    OrderSide,
    OrderType,
    PositionSnapshot,
)
from signal_executor.domain.protocols import Clock, ExchangeGateway
from signal_executor.exceptions import GatewayRejected, GatewayTransient, ReconciliationExhausted
from signal_executor.execution.client_ids import deterministic_client_id, random_client_id
from signal_executor.execution.position_oracle import PositionOracle
from signal_executor.monitoring.logger import get_logger
from signal_executor.reconciliation.position_delta import PositionDelta, within_tolerance
from signal_executor.runtime.clock import SystemClock
from signal_executor.runtime.market_locks import MarketLockTable
from signal_executor.runtime.signal_registry import SignalRegistry

logger = get_logger(__name__)


class ReconciliationState(str, Enum):
    IDLE = "idle"
    LOCKED = "locked"
    CANCEL_PENDING_ORDERS = "cancel_pending_orders"
    MEASURE = "measure"
    CORRECTING = "correcting"
    # Terminal
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ReconciliationSettings:
    """Tunables for one engine; built from ExecutionConfig at startup."""
    tolerance: Decimal = SIZE_TOLERANCE
    max_attempts: int = MAX_RECONCILE_ATTEMPTS
    settle_delay_seconds: float = SETTLE_DELAY_SECONDS
    buy_price_cap: Decimal = AGGRESSIVE_BUY_PRICE_CAP
    sell_price_floor: Decimal = AGGRESSIVE_SELL_PRICE_FLOOR
    stop_loss_pct: Optional[Decimal] = None

    @classmethod
    def from_config(cls, execution_config: Any) -> "ReconciliationSettings":
        stop_pct = getattr(execution_config, "stop_loss_pct", None)
        return cls(
            tolerance=Decimal(str(execution_config.size_tolerance)),
            max_attempts=int(execution_config.max_attempts),
            settle_delay_seconds=float(execution_config.settle_delay_seconds),
            buy_price_cap=Decimal(str(execution_config.buy_price_cap)),
            sell_price_floor=Decimal(str(execution_config.sell_price_floor)),
            stop_loss_pct=Decimal(str(stop_pct)) if stop_pct else None,
        )


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation. Never raised; inspect `status`."""
    market: str
    signal_id: str
    status: ReconciliationState
    target_size: Decimal
    initial_size: Optional[Decimal] = None
    final_size: Optional[Decimal] = None
    attempts: int = 0
    orders: List[CorrectiveOrder] = field(default_factory=list)
    receipts: List[OrderReceipt] = field(default_factory=list)
    cancelled_orders: int = 0
    stop_order: Optional[CorrectiveOrder] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (ReconciliationState.CONVERGED, ReconciliationState.DUPLICATE)

    def raise_for_status(self) -> None:
        """Raise ReconciliationExhausted / GatewayRejected for failed outcomes."""
        if self.status == ReconciliationState.EXHAUSTED:
            raise ReconciliationExhausted(self.market, self.target_size, self.final_size, self.attempts)
        if self.status == ReconciliationState.REJECTED:
            raise GatewayRejected(self.errors[-1] if self.errors else f"Orders rejected for {self.market}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging."""
        return {
            "market": self.market,
            "signal_id": self.signal_id,
            "status": self.status.value,
            "target_size": str(self.target_size),
            "initial_size": str(self.initial_size) if self.initial_size is not None else None,
            "final_size": str(self.final_size) if self.final_size is not None else None,
            "attempts": self.attempts,
            "orders": len(self.orders),
            "cancelled_orders": self.cancelled_orders,
            "stop_placed": self.stop_order is not None,
        }


class ReconciliationEngine:
    """
    Converges one market's position to a target with bounded net-delta orders.

    Shared state (market locks, processed signals) is injected so each service
    instance, and each test, owns its own.
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        *,
        locks: Optional[MarketLockTable] = None,
        signals: Optional[SignalRegistry] = None,
        clock: Optional[Clock] = None,
        settings: Optional[ReconciliationSettings] = None,
        oracle: Optional[PositionOracle] = None,
    ):
        self.gateway = gateway
        self.locks = locks if locks is not None else MarketLockTable()
        self.signals = signals if signals is not None else SignalRegistry()
        self.clock = clock or SystemClock()
        self.settings = settings or ReconciliationSettings()
        self.oracle = oracle or PositionOracle(gateway)

    async def reconcile(self, alert: Alert, target_size: Decimal) -> ReconciliationResult:
        """
        Bring `alert.exchange_market` to `target_size`.

        Returns a DUPLICATE result, without touching the gateway, when the
        alert's signal id was already handled by this engine.
        """
        market = alert.exchange_market
        target = Decimal(target_size)

        if not self.signals.claim(alert.signal_id):
            return ReconciliationResult(
                market=market,
                signal_id=alert.signal_id,
                status=ReconciliationState.DUPLICATE,
                target_size=target,
            )

        with structlog.contextvars.bound_contextvars(signal_id=alert.signal_id, market=market):
            logger.info("RECONCILE_START", target_size=str(target), exchange=getattr(self.gateway, "name", "?"))
            async with self.locks.hold(market):
                self._transition(ReconciliationState.LOCKED)
                result = await self._run_locked(alert, market, target)
            logger.info("RECONCILE_END", **result.to_dict())
            return result

    async def _run_locked(self, alert: Alert, market: str, target: Decimal) -> ReconciliationResult:
        result = ReconciliationResult(
            market=market,
            signal_id=alert.signal_id,
            status=ReconciliationState.CANCEL_PENDING_ORDERS,
            target_size=target,
        )
        self._transition(ReconciliationState.CANCEL_PENDING_ORDERS)
        result.cancelled_orders = await self._cancel_pending_orders(market)

        settings = self.settings
        tolerance = max(settings.tolerance, await self._order_step(market))
        last_snapshot: Optional[PositionSnapshot] = None
        rejected = False
        primary_settled = False

        while True:
            self._transition(ReconciliationState.MEASURE, attempt=result.attempts)
            snapshot, measure_rejected = await self._measure(market, result)
            rejected = rejected or measure_rejected
            if snapshot is not None:
                last_snapshot = snapshot
                if result.initial_size is None:
                    result.initial_size = snapshot.signed_size
                result.final_size = snapshot.signed_size

                delta = PositionDelta(market, target, snapshot.signed_size, tolerance)
                logger.info("POSITION_DELTA_CALCULATED", attempt=result.attempts, **delta.to_dict())
                if delta.is_reconciled:
                    result.status = ReconciliationState.CONVERGED
                    logger.info("RECONCILE_CONVERGED", attempts=result.attempts, final_size=str(snapshot.signed_size))
                    break

            if result.attempts >= settings.max_attempts:
                result.status = ReconciliationState.EXHAUSTED
                break

            result.attempts += 1
            if snapshot is not None:
                self._transition(ReconciliationState.CORRECTING, attempt=result.attempts)
                order = self._build_corrective_order(alert, market, delta, primary=not primary_settled)
                order_rejected = await self._submit(order, result)
                rejected = rejected or order_rejected
                # Primary id is reused until the venue acknowledges or refuses it
                if result.receipts or order_rejected:
                    primary_settled = True

            await self.clock.sleep(settings.settle_delay_seconds)

        if result.status == ReconciliationState.EXHAUSTED:
            if rejected and not result.receipts:
                result.status = ReconciliationState.REJECTED
                logger.error(
                    "RECONCILE_REJECTED",
                    target_size=str(target),
                    current_size=str(result.final_size),
                    attempts=result.attempts,
                    errors=result.errors,
                )
            else:
                logger.warning(
                    "RECONCILE_EXHAUSTED",
                    target_size=str(target),
                    current_size=str(result.final_size),
                    attempts=result.attempts,
                    errors=result.errors,
                    action_required="position may differ from target until the next alert",
                )

        if result.status in (ReconciliationState.CONVERGED, ReconciliationState.EXHAUSTED):
            await self._place_protective_stop(alert, last_snapshot, result)

        return result

    async def _cancel_pending_orders(self, market: str) -> int:
        """Cancel resting orders so none can fill while the position is measured."""
        try:
            orders = await self.gateway.get_open_orders(market)
        except (GatewayTransient, GatewayRejected) as e:
            logger.warning("CANCEL_PENDING_LIST_FAILED", error=str(e))
            return 0

        cancelled = 0
        for order in orders or []:
            if not order.status.is_resting:
                continue
            try:
                await self.gateway.cancel_order(market, order.client_id, order.order_id)
                cancelled += 1
                logger.info(
                    "PENDING_ORDER_CANCELLED",
                    order_id=order.order_id,
                    client_id=order.client_id,
                    order_type=order.order_type.value,
                    reduce_only=order.reduce_only,
                )
            except (GatewayTransient, GatewayRejected) as e:
                logger.warning("PENDING_ORDER_CANCEL_FAILED", order_id=order.order_id, error=str(e))
        return cancelled

    async def _order_step(self, market: str) -> Decimal:
        """Smallest orderable size on the venue; 0 when unknown."""
        try:
            step = await self.gateway.min_order_size(market)
        except (GatewayTransient, GatewayRejected) as e:
            logger.warning("ORDER_STEP_UNAVAILABLE", error=str(e))
            return Decimal("0")
        return Decimal(step or 0)

    async def _measure(
        self, market: str, result: ReconciliationResult
    ) -> Tuple[Optional[PositionSnapshot], bool]:
        """Returns (snapshot or None, whether the venue refused the read)."""
        try:
            return await self.oracle.get_current_position(market), False
        except GatewayTransient as e:
            result.errors.append(f"measure: {e}")
            logger.warning("POSITION_MEASURE_FAILED", attempt=result.attempts, error=str(e))
            return None, False
        except GatewayRejected as e:
            result.errors.append(f"measure rejected: {e}")
            logger.error(
                "POSITION_MEASURE_REJECTED",
                attempt=result.attempts,
                venue_error_code=e.venue_code,
                error=str(e),
            )
            return None, True

    def _build_corrective_order(
        self, alert: Alert, market: str, delta: PositionDelta, *, primary: bool
    ) -> CorrectiveOrder:
        side = delta.side
        client_id = deterministic_client_id(alert, side) if primary else random_client_id()
        price = self.settings.buy_price_cap if side == OrderSide.BUY else self.settings.sell_price_floor
        return CorrectiveOrder(
            market=market,
            side=side,
            size=delta.order_size,
            reduce_only=False,
            client_id=client_id,
            order_type=OrderType.MARKET,
            price=price,
            time_in_force=MARKET_TIME_IN_FORCE,
        )

    async def _submit(self, order: CorrectiveOrder, result: ReconciliationResult) -> bool:
        """Place one order. Returns True when the venue rejected it."""
        result.orders.append(order)
        try:
            receipt = await self.gateway.place_order(
                order.market,
                order.side,
                order.order_type,
                order.price,
                order.size,
                order.client_id,
                order.time_in_force,
                reduce_only=order.reduce_only,
                trigger_price=order.trigger_price,
            )
        except GatewayTransient as e:
            result.errors.append(f"place: {e}")
            logger.warning("ORDER_SUBMIT_FAILED", attempt=result.attempts, error=str(e), **order.to_dict())
            return False
        except GatewayRejected as e:
            result.errors.append(f"rejected: {e}")
            logger.error(
                "ORDER_REJECTED_BY_VENUE",
                attempt=result.attempts,
                venue_error_code=e.venue_code,
                error=str(e),
                **order.to_dict(),
            )
            return True

        result.receipts.append(receipt)
        logger.info("ORDER_SUBMITTED", attempt=result.attempts, order_id=receipt.order_id, **order.to_dict())
        return False

    async def _place_protective_stop(
        self,
        alert: Alert,
        snapshot: Optional[PositionSnapshot],
        result: ReconciliationResult,
    ) -> None:
        """Reduce-only stop on the opposite side of the resulting position. Failure never rolls back."""
        pct = self.settings.stop_loss_pct
        if not pct or snapshot is None:
            return
        if within_tolerance(snapshot.signed_size, Decimal("0"), self.settings.tolerance):
            return

        entry = snapshot.entry_price or alert.price
        if not entry or Decimal(entry) <= 0:
            logger.warning("STOP_SKIPPED_NO_ENTRY_PRICE", position=str(snapshot.signed_size))
            return
        entry = Decimal(entry)

        is_long = snapshot.signed_size > 0
        side = OrderSide.SELL if is_long else OrderSide.BUY
        trigger = entry * (Decimal("1") - pct) if is_long else entry * (Decimal("1") + pct)
        stop = CorrectiveOrder(
            market=snapshot.market,
            side=side,
            size=abs(snapshot.signed_size),
            reduce_only=True,
            client_id=random_client_id(),
            order_type=OrderType.STOP,
            price=self.settings.sell_price_floor if side == OrderSide.SELL else self.settings.buy_price_cap,
            trigger_price=trigger,
            time_in_force=STOP_TIME_IN_FORCE,
        )
        try:
            await self.gateway.place_order(
                stop.market,
                stop.side,
                stop.order_type,
                stop.price,
                stop.size,
                stop.client_id,
                stop.time_in_force,
                reduce_only=True,
                trigger_price=stop.trigger_price,
            )
        except (GatewayTransient, GatewayRejected) as e:
            result.errors.append(f"stop: {e}")
            logger.error("STOP_PLACEMENT_FAILED", error=str(e), **stop.to_dict())
            return
        result.stop_order = stop
        logger.info("STOP_PLACED", entry_price=str(entry), **stop.to_dict())

    def _transition(self, state: ReconciliationState, **context) -> None:
        logger.debug("RECONCILE_STATE", state=state.value, **context)
